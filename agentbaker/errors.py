"""
errors.py
=========

All errors raised by the node bootstrapping engine. Every error carries
enough context to identify the configuration field or template involved.
Nothing in the engine retries or swallows these, it is up to the caller
to decide what to do.
"""


class BakerError(Exception):
    """Base class for all agentbaker errors"""


class ResolutionError(BakerError):
    """A version, component or distribution could not be resolved.

    Args:
        msg (str): the error message
        field (str): the configuration field that failed to resolve
        value (str): the offending value
    """
    def __init__(self, msg, field=None, value=None):
        super().__init__(msg)
        self.field = field
        self.value = value


class VersionError(ResolutionError):
    """A version string is not of the form major.minor.patch"""


class MergeError(BakerError):
    """A flag layer could not be merged, e.g. malformed feature gates.

    Args:
        msg (str): the error message
        entry (str): the entry which failed to parse
        layer (int): the index of the layer, lowest precedence is 0
    """
    def __init__(self, msg, entry=None, layer=None):
        super().__init__(msg)
        self.entry = entry
        self.layer = layer


class TemplateError(BakerError):
    """A template bundle could not be rendered.

    Args:
        msg (str): the error message
        bundle (str): the name of the template bundle
        template (str): the template in the bundle, if known
    """
    def __init__(self, msg, bundle=None, template=None):
        super().__init__(msg)
        self.bundle = bundle
        self.template = template


class InsertionPointError(TemplateError):
    """An addon was requested for an insertion point the bundle lacks"""

    def __init__(self, msg, bundle=None, insertion_point=None):
        super().__init__(msg, bundle=bundle)
        self.insertion_point = insertion_point


class UnboundPlaceholderError(TemplateError):
    """One or more placeholders of a template are not bound to a value"""

    def __init__(self, msg, bundle=None, template=None, placeholders=()):
        super().__init__(msg, bundle=bundle, template=template)
        self.placeholders = tuple(sorted(placeholders))


class ConfigurationError(BakerError):
    """The caller passed an incomplete or invalid configuration.

    Args:
        msg (str): the error message
        field (str): dotted path of the offending field
    """
    def __init__(self, msg, field=None):
        super().__init__(msg)
        self.field = field
