from ..exc import ArgumentError, InvalidOperatorError
from ..naming import columnize, format_field
from ..types import encode_value


class FilterFragment:
    """ A piece of a flat filter document: `{field: {$op: value}}` """

    __slots__ = ('document',)

    #: Fragments of this kind can be put into a flat filter
    requires_pipeline = False

    def __init__(self, document: dict):
        self.document = document

    def __eq__(self, other):
        return isinstance(other, FilterFragment) and self.document == other.document

    def __repr__(self):
        return 'FilterFragment({!r})'.format(self.document)


class PipelineFragment:
    """ A sequence of aggregation stages: `[{$match: ...}, {$lookup: ...}]` """

    __slots__ = ('stages',)

    requires_pipeline = True

    def __init__(self, stages: list):
        self.stages = list(stages)

    def __eq__(self, other):
        return isinstance(other, PipelineFragment) and self.stages == other.stages

    def __repr__(self):
        return 'PipelineFragment({!r})'.format(self.stages)


class OperatorBase:
    """ A compilation strategy for one query operator

        Every subclass handles one operator, which is registered under one or more tags.
        The first tag is the canonical name of the operator; the rest are aliases.

        A strategy has to implement two things:

        * validate(value, settings): check the value and return it, possibly normalized.
            Called when a Constraint is constructed, so that bad input never reaches compilation.
        * compile(operand, value): produce a Fragment.

        The `operand` given to compile() is already formatted with the field formatter.
    """

    #: Tags this operator is registered under
    tags = ()

    #: Operator key in the filter document (e.g. `$gt`)
    keyword = None

    #: Does this operator always produce a PipelineFragment?
    pipeline_only = False

    @property
    def name(self) -> str:
        return self.tags[0]

    def validate(self, value, settings=None):
        return value

    def compile(self, operand: str, value, formatter=columnize):
        """ Compile the operator: `{operand: {keyword: value}}`

            :rtype: FilterFragment | PipelineFragment
        """
        return FilterFragment({operand: {self.keyword: encode_value(value)}})

    def format_field(self, name, formatter=columnize) -> str:
        return format_field(name, formatter)

    def argument_error(self, message: str, *args) -> ArgumentError:
        """ Make an ArgumentError that mentions the operator """
        return ArgumentError('{}: {}'.format(self.name, message.format(*args)))

    def __repr__(self):
        return '<{} {}>'.format(self.__class__.__name__, '|'.join(self.tags))


class PipelineOperatorBase(OperatorBase):
    """ An operator that can only be expressed as an aggregation pipeline """

    pipeline_only = True

    def compile(self, operand: str, value, formatter=columnize) -> PipelineFragment:
        return PipelineFragment(self.compile_stages(operand, value, formatter))

    def compile_stages(self, operand: str, value, formatter=columnize) -> list:
        raise NotImplementedError()


class OperatorRegistry:
    """ A mapping of operator tags to compilation strategies

        Example:

            @registry.register
            class ModuloOperator(OperatorBase):
                tags = ('mod',)
                keyword = '$mod'

        New operators are added here, and only here: the Query does not need to know about them.
    """

    def __init__(self):
        self._operators = {}

    def register(self, operator_cls):
        """ Register an operator class under all of its tags

            Can be used as a class decorator.

            :raises ValueError: a tag is already taken
        """
        if not operator_cls.tags:
            raise ValueError('{} has no tags to register'.format(operator_cls.__name__))

        taken = [tag for tag in operator_cls.tags if tag in self._operators]
        if taken:
            raise ValueError('Operator tags already registered: {}'.format(', '.join(taken)))

        operator = operator_cls()
        for tag in operator_cls.tags:
            self._operators[tag] = operator
        return operator_cls

    def unregister(self, tag: str):
        """ Remove an operator (with all of its aliases) """
        operator = self.get(tag)
        for t in operator.tags:
            self._operators.pop(t, None)

    def get(self, tag) -> OperatorBase:
        """ Get the operator registered under `tag`

            :raises InvalidOperatorError: no such operator
        """
        try:
            return self._operators[str(tag)]
        except KeyError:
            raise InvalidOperatorError('Unknown query operator: {!r}'.format(tag), operator=str(tag))

    def __contains__(self, tag):
        return tag in self._operators

    @property
    def tags(self) -> frozenset:
        return frozenset(self._operators)

    def copy(self) -> 'OperatorRegistry':
        """ A copy of the registry: add custom operators to it without affecting the global one """
        registry = self.__class__()
        registry._operators = dict(self._operators)
        return registry


#: The global registry of operators
registry = OperatorRegistry()
