# CUI // SP-CTI
"""ATO Engine — compliance assessment and remediation orchestration.

Scans cloud workloads against NIST 800-53 control families, scores the
results, plans and executes remediations, and packages evidence for eMASS
submission and POA&M tracking.
"""

__version__ = "1.0.0"
