"""
## Security Sandbox

Pipelines and constraint documents that come from untrusted sources (API users, agents)
have to go through the sandbox before they're executed:

* `PipelineValidator` checks an aggregation pipeline
* `ConstraintTranslator` checks and translates a constraint document (a `where`)

Both use one policy (see `policy.py`): closed allow-lists of stages and operators,
a deny-list of constructs that write to storage or execute code, and depth & size ceilings.
Input is never sanitized: it's accepted as is, or rejected with an exception.
"""

from .pipeline_validator import PipelineValidator, validate_pipeline
from .constraint_translator import ConstraintTranslator, translate_constraints
