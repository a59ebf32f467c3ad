"""
### Join Operators

Compare a pointer field of a record with a pointer field of another record, reached through a third pointer.

* `equals_linked_pointer`: `{'through': 'project', 'field': 'owner'}` on the `author` field:
    the post's author is the owner of the post's project
* `does_not_equal_linked_pointer`: the opposite

See `mongopipe.pipeline.linked_pointer_stages()` for the stages these compile into.
"""

from .base import PipelineOperatorBase, registry
from ..naming import columnize
from ..pipeline import linked_pointer_stages


@registry.register
class EqualsLinkedPointerOperator(PipelineOperatorBase):
    tags = ('equals_linked_pointer',)

    #: Comparison for the `$expr`
    comparator = '$eq'

    def validate(self, value, settings=None):
        if not isinstance(value, dict):
            raise self.argument_error("value must be a dict: {{'through': 'linked_field', 'field': 'target_field'}}; "
                                      "got {!r}", value)
        through, field = value.get('through'), value.get('field')
        if not through or not field:
            raise self.argument_error("both `through` and `field` are required; got {!r}", value)
        return str(through), str(field)

    def compile_stages(self, operand, value, formatter=columnize):
        through, field = value
        return linked_pointer_stages(operand, through, field, self.comparator, formatter)


@registry.register
class DoesNotEqualLinkedPointerOperator(EqualsLinkedPointerOperator):
    tags = ('does_not_equal_linked_pointer',)
    comparator = '$ne'
