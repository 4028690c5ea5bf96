# CUI // SP-CTI
"""Engine configuration and typed option structs."""

from atoengine.config.engine_config import (  # noqa: F401
    EngineConfig,
    NIST_CONTROL_FAMILIES,
    config_from_dict,
    load_engine_config,
)
from atoengine.config.options import (  # noqa: F401
    HardeningOptions,
    PlanOptions,
    RemediationOptions,
)
