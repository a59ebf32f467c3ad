""" The policy shared by the pipeline validator and the constraint translator

    Everything that is not explicitly allowed is rejected.
    Denied constructs are rejected with a security error; unknown ones with an "unknown operator" error,
    so that callers can tell "not supported" from "actively blocked".
"""

#: Stages and operators that write to storage, change the schema, or run server-side code.
#: Blocked at any depth of a pipeline.
DENIED_PIPELINE_OPERATORS = frozenset((
    '$out',
    '$merge',
    '$function',
    '$accumulator',
    '$where',
    '$collMod',
    '$createIndex',
    '$dropIndex',
))

#: Operators that run server-side code, or let a constraint document inject an arbitrary expression.
#: Blocked at any depth of a constraint document.
DENIED_CONSTRAINT_OPERATORS = frozenset((
    '$where',
    '$function',
    '$accumulator',
    '$expr',
))

#: Stages a pipeline may consist of
ALLOWED_STAGES = frozenset((
    '$match',
    '$group',
    '$sort',
    '$project',
    '$limit',
    '$skip',
    '$unwind',
    '$lookup',
    '$count',
    '$addFields',
    '$set',
    '$unset',
    '$bucket',
    '$bucketAuto',
    '$facet',
    '$sample',
    '$sortByCount',
    '$replaceRoot',
    '$replaceWith',
    '$redact',
    '$graphLookup',
    '$unionWith',
))

#: Stages that hold sub-pipelines: {stage: key of the sub-pipeline, or None when every value is one}
SUB_PIPELINE_STAGES = {
    '$facet': None,
    '$lookup': 'pipeline',
    '$unionWith': 'pipeline',
}

#: Operators a constraint document may use
ALLOWED_CONSTRAINT_OPERATORS = frozenset((
    # comparison
    '$lt', '$lte', '$gt', '$gte', '$ne', '$eq',
    # lists
    '$in', '$nin', '$all', '$exists',
    '$containedIn', '$containsAll',
    # text
    '$regex', '$options',
    '$text', '$search', '$term', '$language', '$caseSensitive', '$diacriticSensitive',
    # geo
    '$near', '$nearSphere', '$maxDistance', '$maxDistanceInMiles', '$maxDistanceInKilometers', '$maxDistanceInRadians',
    '$within', '$geoWithin', '$geoIntersects', '$centerSphere', '$box', '$polygon',
    # sub-queries
    '$relatedTo', '$inQuery', '$notInQuery', '$select', '$dontSelect',
    # logic
    '$or', '$and', '$nor',
))

#: Limits
MAX_PIPELINE_STAGES = 20
MAX_PIPELINE_DEPTH = 10
MAX_QUERY_DEPTH = 8
