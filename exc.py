class ApplicationError(Exception):
    pass


class LabelSourceError(ApplicationError):
    pass
