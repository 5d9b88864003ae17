class ConfigurationError(ValueError):
    """
    Raised when an object is constructed with settings it can not work with,
    e.g. a beta outside of [0.5, 1] or a steering method that does not produce
    Hermite curves. Raised before any solving starts.
    """

    pass


class ProjectionError(RuntimeError):
    """
    Raised when a path endpoint does not satisfy the constraints attached to
    the path.
    """

    pass
