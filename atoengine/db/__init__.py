# CUI // SP-CTI
"""Assessment history persistence."""

from atoengine.db.assessment_store import AssessmentStore  # noqa: F401
