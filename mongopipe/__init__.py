"""
MongoPipe compiles declarative queries into MongoDB-style filters and aggregation pipelines
for a Parse-style backend.

A query is described with conditions on fields:

```python
from mongopipe import Query

q = Query('Post').where(votes__gte=10, author__id='xWMyZ4YEGZ').order('-created_at').limit(10)
q.compile()           # REST parameters: where, order, limit, ...
q.build_pipeline()    # or an aggregation pipeline, when the query needs one
```

Flat conditions become a filter document. Conditions that a filter can't express
(joins through pointers, array set algebra, ACL checks) turn the query into an aggregation pipeline.

Pipelines and constraint documents that come from untrusted sources (API users, agents)
can be checked with the security sandbox before they're run, and throttled with a rate limiter.
"""

# Exceptions that are used here and there
from .exc import *

# Types the backend stores in a special way
from .types import Pointer, GeoPoint

# Operators: the tags you use in `field__operator=value`.
# Add your own with `@registry.register`
from .operators import registry, OperatorBase, PipelineOperatorBase, OperatorRegistry
from .operators import FilterFragment, PipelineFragment

# Conditions, and the Query that holds them
from .constraint import Constraint, CompoundConstraint
from .query import Query

# Access control lists
from .acl import ACL, Permission

# Pipelines
from .pipeline import PipelineBuilder, linked_pointer_stages

# Security sandbox & throttling
from .sandbox import PipelineValidator, validate_pipeline, ConstraintTranslator, translate_constraints
from .ratelimit import RateLimiter

# Settings
from .util import QuerySettingsDict
