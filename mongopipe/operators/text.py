"""
### Text Operators

* `regex` (`like`): `{field: {$regex: pattern}}`. A compiled `re` pattern with `re.IGNORECASE` adds `$options: "i"`.
* `starts_with`: case-insensitive prefix match
* `ends_with`: case-insensitive suffix match
* `contains`: case-insensitive substring match
* `text_search`: full-text search: `{field: {$text: {$search: {$term: ...}}}}`

The backend evaluates regular expressions with a backtracking engine, so user-supplied patterns
are checked by `RegexSecurity` before they are accepted. The other operators escape their input
and only check its length.
"""

import re

from .base import OperatorBase, FilterFragment, registry
from ..exc import ArgumentError
from ..naming import columnize


class RegexSecurity:
    """ Reject regular expressions that can cause catastrophic backtracking (ReDoS) """

    #: Maximum length of a pattern
    MAX_PATTERN_LENGTH = 500

    #: Constructs that make a backtracking engine go exponential
    DANGEROUS_PATTERNS = (
        # Lookahead and lookbehind assertions
        re.compile(r'\(\?=|\(\?!|\(\?<[!=]'),
        # Large repetition counts: {1000} or {1,1000}
        re.compile(r'\{(\d{3,}|\d+,\d{3,})\}'),
        # Consecutive wildcards: .*.* or .+.*
        re.compile(r'(\.\*|\.\+)\s*(\.\*|\.\+)'),
        # Nested quantifiers: (a+)+
        re.compile(r'\([^)]*(\+|\*)[^)]*\)\s*(\+|\*)'),
        re.compile(r'\(\?[^)]*\([^)]*(\+|\*)[^)]*\)[^)]*(\+|\*)\)'),
    )

    @classmethod
    def validate(cls, pattern, max_length: int = None) -> str:
        """ Check a pattern; return it as a string

            :raises ArgumentError: the pattern is too long or is dangerous
        """
        max_length = max_length or cls.MAX_PATTERN_LENGTH
        pattern_str = pattern.pattern if isinstance(pattern, re.Pattern) else str(pattern)

        if len(pattern_str) > max_length:
            raise ArgumentError('Regex pattern too long ({} chars, max {})'.format(len(pattern_str), max_length))

        for dangerous in cls.DANGEROUS_PATTERNS:
            if dangerous.search(pattern_str):
                raise ArgumentError('Regex pattern contains constructs that could cause '
                                    'catastrophic backtracking: {!r}'.format(pattern_str))

        return pattern_str

    @classmethod
    def is_safe(cls, pattern, max_length: int = None) -> bool:
        try:
            cls.validate(pattern, max_length)
        except ArgumentError:
            return False
        else:
            return True


def _max_length(settings) -> int:
    return settings['regex_max_length'] if settings else RegexSecurity.MAX_PATTERN_LENGTH


@registry.register
class RegexOperator(OperatorBase):
    tags = ('regex', 'like')
    keyword = '$regex'

    def validate(self, value, settings=None):
        ignore_case = isinstance(value, re.Pattern) and bool(value.flags & re.IGNORECASE)
        if not isinstance(value, (str, re.Pattern)):
            raise self.argument_error('value must be a string or a compiled pattern; got {!r}', value)
        # Store as a (pattern, options) tuple
        return RegexSecurity.validate(value, _max_length(settings)), 'i' if ignore_case else None

    def compile(self, operand, value, formatter=columnize):
        pattern, options = value
        if options:
            return FilterFragment({operand: {'$regex': pattern, '$options': options}})
        return FilterFragment({operand: {'$regex': pattern}})


class EscapedRegexOperator(OperatorBase):
    """ A case-insensitive regex built from escaped user input """

    keyword = '$regex'

    #: Pattern template. `{}` is replaced with the escaped value.
    template = None

    def validate(self, value, settings=None):
        if not isinstance(value, str):
            raise self.argument_error('value must be a string; got {!r}', value)
        max_length = _max_length(settings)
        if len(value) > max_length:
            raise self.argument_error('value too long ({} chars, max {})', len(value), max_length)
        return value

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {
            '$regex': self.template.format(re.escape(value)),
            '$options': 'i',
        }})


@registry.register
class StartsWithOperator(EscapedRegexOperator):
    tags = ('starts_with',)
    template = '^{}'


@registry.register
class EndsWithOperator(EscapedRegexOperator):
    tags = ('ends_with',)
    template = '{}$'


@registry.register
class ContainsOperator(EscapedRegexOperator):
    tags = ('contains',)
    template = '.*{}.*'


@registry.register
class TextSearchOperator(OperatorBase):
    """ Full-text search

        Value: a search term, or a dict of parameters: `{term: 'text', language: 'en', case_sensitive: True}`.
        Parameter names are columnized and prefixed with `$`.
    """
    tags = ('text_search',)
    keyword = '$text'

    def validate(self, value, settings=None):
        if isinstance(value, str):
            value = {'$term': value}
        if not isinstance(value, dict):
            raise self.argument_error('value must be a string or a dict of parameters; got {!r}', value)

        params = {}
        for k, v in value.items():
            k = str(k)
            if not k.startswith('$'):
                k = '$' + columnize(k)
            params[k] = v

        if not params.get('$term'):
            raise self.argument_error('missing the required `term` parameter')
        return params

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {'$text': {'$search': dict(value)}}})
