class BaseMongoPipeException(Exception):
    pass


class ArgumentError(BaseMongoPipeException, ValueError):
    """ Invalid input provided to a constraint, an operator, or a query """


class InvalidOperatorError(ArgumentError):
    """ The operator is not known to the registry, or is not on the allow-list """

    reason = 'unknown_operator'

    def __init__(self, message: str, operator: str = None):
        self.operator = operator
        super(InvalidOperatorError, self).__init__(message)


class InvalidStageError(InvalidOperatorError):
    """ Pipeline stage is not on the allow-list """

    def __init__(self, message: str, operator: str = None, stage: int = None):
        self.stage = stage
        super(InvalidStageError, self).__init__(message, operator=operator)


class TableMismatchError(ArgumentError):
    """ Queries combined together target different collections """

    def __init__(self, tables):
        self.tables = tuple(tables)
        super(TableMismatchError, self).__init__(
            'All queries must target the same collection; got: {}'.format(', '.join(map(repr, self.tables)))
        )


class SandboxSecurityError(BaseMongoPipeException):
    """ A construct was blocked by the security sandbox

        Always fail-closed: the input is rejected, never sanitized.
    """

    def __init__(self, message: str, operator: str = None, reason: str = None):
        self.operator = operator
        self.reason = reason
        super(SandboxSecurityError, self).__init__(message)


class PipelineSecurityError(SandboxSecurityError):
    """ A pipeline contains a stage or an operator that can write data or execute code """

    def __init__(self, message: str, operator: str = None, reason: str = None, stage: int = None):
        self.stage = stage
        super(PipelineSecurityError, self).__init__(message, operator=operator, reason=reason)


class ConstraintSecurityError(SandboxSecurityError):
    """ A constraint document contains an operator that can execute code """


class LimitExceededError(SandboxSecurityError):
    """ A resource ceiling was hit before validation could complete """

    def __init__(self, message: str, reason: str = None, stage: int = None):
        self.stage = stage
        super(LimitExceededError, self).__init__(message, reason=reason)


class StageLimitError(LimitExceededError):
    def __init__(self, count: int, max_stages: int):
        self.count = count
        self.max_stages = max_stages
        super(StageLimitError, self).__init__(
            'Pipeline exceeds the maximum of {} stages (got {} stages)'.format(max_stages, count),
            reason='stage_limit_exceeded')


class PipelineDepthError(LimitExceededError):
    def __init__(self, max_depth: int, stage: int = None):
        self.max_depth = max_depth
        super(PipelineDepthError, self).__init__(
            'Stage {} exceeds the maximum nesting depth of {}'.format(stage, max_depth),
            reason='depth_exceeded',
            stage=stage)


class QueryDepthError(LimitExceededError):
    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super(QueryDepthError, self).__init__(
            'Constraint document exceeds the maximum nesting depth of {}'.format(max_depth),
            reason='depth_exceeded')


class RateLimitExceeded(BaseMongoPipeException):
    """ The caller has used up the capacity of the current window """

    def __init__(self, limit: int, window: float, retry_after: float):
        self.limit = limit
        self.window = window
        self.retry_after = retry_after

        super(RateLimitExceeded, self).__init__(
            'Rate limit exceeded ({limit} requests per {window}s). Retry after {retry_after:.1f}s'.format(
                limit=limit,
                window=window,
                retry_after=retry_after)
        )


class ClientNotBoundError(BaseMongoPipeException, RuntimeError):
    """ The query has to be bound to a client before it can be executed """
