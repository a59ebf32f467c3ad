import logging

from . import policy
from ..exc import (
    BaseMongoPipeException,
    InvalidStageError,
    PipelineSecurityError,
    PipelineDepthError,
    StageLimitError,
)

logger = logging.getLogger(__name__)


class PipelineValidator:
    """ Validate an aggregation pipeline that comes from an untrusted source

        The pipeline is walked recursively, and is rejected when:

        * it's not a list, or is empty
        * it has more than `max_stages` stages (checked before anything else)
        * any stage is nested deeper than `max_depth`
        * a denied operator (`$out`, `$merge`, `$function`, ...) is found at any depth
        * a stage is not on the allow-list. This is also checked within sub-pipelines of `$facet`, `$lookup`, `$unionWith`.

        The input is never modified: it's either accepted as is, or rejected.
    """

    def __init__(self, max_stages: int = policy.MAX_PIPELINE_STAGES, max_depth: int = policy.MAX_PIPELINE_DEPTH):
        self.max_stages = max_stages
        self.max_depth = max_depth

    @classmethod
    def from_settings(cls, settings) -> 'PipelineValidator':
        """ Make a validator with `max_pipeline_stages` and `max_pipeline_depth` from query settings """
        return cls(max_stages=settings['max_pipeline_stages'],
                   max_depth=settings['max_pipeline_depth'])

    def validate(self, pipeline) -> list:
        """ Validate a pipeline

            :return: the same pipeline
            :raises PipelineSecurityError: a denied construct, or an invalid pipeline
            :raises LimitExceededError: too many stages, or nested too deep
            :raises InvalidStageError: unknown stage
        """
        try:
            self._validate_pipeline(pipeline)
        except BaseMongoPipeException as e:
            logger.warning('Pipeline rejected (%s): %s', getattr(e, 'reason', None), e)
            raise
        return pipeline

    def is_valid(self, pipeline) -> bool:
        """ Check a pipeline; never raises """
        try:
            self.validate(pipeline)
        except BaseMongoPipeException:
            return False
        else:
            return True

    def _validate_pipeline(self, pipeline):
        if not isinstance(pipeline, (list, tuple)):
            raise PipelineSecurityError('Pipeline must be a list of stages; got {}'.format(type(pipeline).__name__),
                                        reason='invalid_type')
        if not pipeline:
            raise PipelineSecurityError('Pipeline must not be empty', reason='empty_pipeline')

        # Count stages before walking them
        if len(pipeline) > self.max_stages:
            raise StageLimitError(len(pipeline), self.max_stages)

        for index, stage in enumerate(pipeline):
            self._validate_stage(stage, index, depth=0)

    def _validate_stage(self, stage, index: int, depth: int):
        """ Validate a stage: a single-key dict with an allowed stage name """
        if depth > self.max_depth:
            raise PipelineDepthError(self.max_depth, stage=index)
        if not isinstance(stage, dict) or len(stage) != 1:
            raise PipelineSecurityError('Stage {} must be a single-key dict; got {!r}'.format(index, stage),
                                        stage=index,
                                        reason='invalid_stage_type')

        (name, value), = stage.items()
        name = str(name)

        # Denied first: "blocked" is more important than "unknown"
        self._check_denied(name, index)
        if name not in policy.ALLOWED_STAGES:
            raise InvalidStageError('Unknown aggregation stage {!r} in stage {}: it is not on the allow-list'
                                    .format(name, index),
                                    operator=name,
                                    stage=index)

        # Sub-pipelines: their stages are validated as stages
        if name in policy.SUB_PIPELINE_STAGES and isinstance(value, dict):
            self._validate_sub_pipelines(name, value, index, depth + 1)
        else:
            self._validate_nested(value, index, depth + 1)

    def _validate_sub_pipelines(self, name: str, value: dict, index: int, depth: int):
        if depth > self.max_depth:
            raise PipelineDepthError(self.max_depth, stage=index)

        pipeline_key = policy.SUB_PIPELINE_STAGES[name]
        for k, v in value.items():
            self._check_denied(str(k), index)
            # $facet: every value is a pipeline; $lookup: only the `pipeline` key
            if (pipeline_key is None or k == pipeline_key) and isinstance(v, (list, tuple)):
                if depth + 1 > self.max_depth:
                    raise PipelineDepthError(self.max_depth, stage=index)
                for sub_stage in v:
                    self._validate_stage(sub_stage, index, depth + 2)
            else:
                self._validate_nested(v, index, depth + 1)

    def _validate_nested(self, value, index: int, depth: int):
        """ Walk any value and look for denied operators """
        if depth > self.max_depth:
            raise PipelineDepthError(self.max_depth, stage=index)

        if isinstance(value, dict):
            for k, v in value.items():
                self._check_denied(str(k), index)
                self._validate_nested(v, index, depth + 1)
        elif isinstance(value, (list, tuple)):
            for v in value:
                self._validate_nested(v, index, depth + 1)

    def _check_denied(self, name: str, index: int):
        if name in policy.DENIED_PIPELINE_OPERATORS:
            raise PipelineSecurityError(
                "SECURITY: operator {!r} in stage {} is blocked: it can write data or execute code".format(name, index),
                operator=name,
                reason='code_execution',
                stage=index)


def validate_pipeline(pipeline, max_stages: int = policy.MAX_PIPELINE_STAGES,
                      max_depth: int = policy.MAX_PIPELINE_DEPTH) -> list:
    """ Validate a pipeline with a one-off validator """
    return PipelineValidator(max_stages=max_stages, max_depth=max_depth).validate(pipeline)
