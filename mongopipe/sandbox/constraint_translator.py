import logging

from . import policy
from ..exc import (
    BaseMongoPipeException,
    ConstraintSecurityError,
    InvalidOperatorError,
    QueryDepthError,
)
from ..naming import columnize, format_field
from ..types import is_parse_type

logger = logging.getLogger(__name__)


class ConstraintTranslator:
    """ Translate a constraint document that comes from an untrusted source into a safe filter

        Example:

            ConstraintTranslator().translate({'play_count': {'$gte': 10}, '$or': [{'genre': 'rock'}]})
            # -> {'playCount': {'$gte': 10}, '$or': [{'genre': 'rock'}]}

        * Every `$` key is checked against the allow-list, at any depth.
            Code-executing operators (`$where`, `$function`, `$accumulator`, `$expr`) are rejected as a security violation.
        * Field names are converted with the field formatter
        * Typed values (`{"__type": "Pointer", ...}`) are passed through as they are
        * Documents nested deeper than `max_depth` are rejected
    """

    def __init__(self, max_depth: int = policy.MAX_QUERY_DEPTH, field_formatter=columnize):
        self.max_depth = max_depth
        self.field_formatter = field_formatter

    @classmethod
    def from_settings(cls, settings) -> 'ConstraintTranslator':
        """ Make a translator configured with `max_query_depth` and `field_formatter` from query settings

            :type settings: mongopipe.util.QuerySettingsDict
        """
        return cls(max_depth=settings['max_query_depth'],
                   field_formatter=settings['field_formatter'])

    def translate(self, constraints) -> dict:
        """ Validate and translate a constraint document

            :raises ConstraintSecurityError: a denied operator
            :raises InvalidOperatorError: an unknown operator, or not a document
            :raises QueryDepthError: nested too deep
        """
        if not constraints:
            return {}
        if not isinstance(constraints, dict):
            raise InvalidOperatorError('Constraints must be a dict; got {}'.format(type(constraints).__name__))

        try:
            return self._translate_document(constraints, depth=0)
        except BaseMongoPipeException as e:
            logger.warning('Constraints rejected (%s): %s', getattr(e, 'reason', None), e)
            raise

    def is_valid(self, constraints) -> bool:
        """ Check a constraint document; never raises """
        try:
            self.translate(constraints)
        except BaseMongoPipeException:
            return False
        else:
            return True

    def _translate_document(self, document: dict, depth: int) -> dict:
        """ Translate a document; its values are at `depth` """
        result = {}
        for key, value in document.items():
            key = str(key)
            if key.startswith('$'):
                self._check_operator(key)
                result[key] = self._translate_value(value, depth)
            else:
                result[format_field(key, self.field_formatter)] = self._translate_value(value, depth)
        return result

    def _translate_value(self, value, depth: int):
        # Depth is checked before the value is examined
        if depth > self.max_depth:
            raise QueryDepthError(self.max_depth)

        if isinstance(value, dict):
            # Typed values are passed through only when there are no operators in them
            if is_parse_type(value) and not any(str(k).startswith('$') for k in value):
                return value
            return self._translate_document(value, depth + 1)
        elif isinstance(value, (list, tuple)):
            return [self._translate_value(v, depth + 1) for v in value]
        else:
            return value

    @staticmethod
    def _check_operator(name: str):
        if name in policy.DENIED_CONSTRAINT_OPERATORS:
            raise ConstraintSecurityError(
                "SECURITY: operator {!r} is blocked: it allows arbitrary code execution".format(name),
                operator=name,
                reason='code_execution')
        if name not in policy.ALLOWED_CONSTRAINT_OPERATORS:
            raise InvalidOperatorError('Unknown query operator {!r}: it is not on the allow-list'.format(name),
                                       operator=name)


def translate_constraints(constraints, max_depth: int = policy.MAX_QUERY_DEPTH, field_formatter=columnize,
                          settings=None) -> dict:
    """ Translate a constraint document with a one-off translator

        :param settings: Query settings; when given, they override `max_depth` and `field_formatter`
    """
    if settings is not None:
        translator = ConstraintTranslator.from_settings(settings)
    else:
        translator = ConstraintTranslator(max_depth=max_depth, field_formatter=field_formatter)
    return translator.translate(constraints)
