"""
## Operators

A constraint is a triple: (field, operator, value). The operator is a tag, like `gt` or `starts_with`,
that names a compilation strategy in the registry. There are two kinds of strategies:

* Direct operators produce a `FilterFragment`: a piece of a flat filter document, `{field: {$op: value}}`.
* Pipeline-only operators produce a `PipelineFragment`: a list of aggregation stages.
    A Query that uses any of them has to be compiled as a pipeline.

Operators are grouped by module:

* `comparison`: eq, ne, lt, lte, gt, gte, between, between_dates, in, nin, all, exists, null, empty, id
* `text`: regex, starts_with, ends_with, contains, text_search
* `geo`: near, within_miles, within_kilometers, within_radians, within_box, within_polygon
* `subquery`: select, reject, in_query, not_in_query, related_to
* `array` (pipeline): size, arr_empty, arr_nempty, empty_or_nil, not_empty, set_equals, not_set_equals,
    eq_array, neq, subset_of, first, last, elem_match
* `acl` (pipeline): readable_by, writable_by, readable_by_role, writable_by_role,
    not_readable_by, not_writable_by, private_acl
* `join` (pipeline): equals_linked_pointer, does_not_equal_linked_pointer

#### Custom operators
A new operator is added by registering a strategy class:

```python
from mongopipe.operators import registry, OperatorBase

@registry.register
class ModuloOperator(OperatorBase):
    tags = ('mod',)
    keyword = '$mod'

Query('Post', votes__mod=[2, 0])
```

The Query does not need to know about it.
"""

from .base import FilterFragment, PipelineFragment
from .base import OperatorBase, PipelineOperatorBase
from .base import OperatorRegistry, registry

# Register all operators
from . import comparison, text, geo, subquery, array, acl, join
