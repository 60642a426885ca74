class InvalidStateError(Exception):
    pass


class DescriptionApplyError(Exception):
    pass


class CandidateApplyError(Exception):
    pass


class UnknownEndpointError(Exception):
    pass
