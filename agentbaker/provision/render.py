"""
render
======

Render a template bundle into the files of a node and the arguments of
its CSE command.

Substitution is total: before anything is rendered, each template is
parsed and its free variables are checked against the bound values. A
template using a name nobody bound fails the render with
:class:`~agentbaker.errors.UnboundPlaceholderError`, a half rendered
script never leaves this module.
"""
import json
import shlex

import jinja2
from jinja2 import meta

from agentbaker.errors import (TemplateError, InsertionPointError,
                               UnboundPlaceholderError)
from agentbaker.provision.distro import ADDON_PREFIX
from agentbaker.util.logger import Logger

LOGGER = Logger(__name__)


def ps_quote(value):
    """quote a value as a PowerShell single quoted string"""
    return "'" + str(value).replace("'", "''") + "'"


def create_environment(loader=None):
    """
    Create the jinja2 environment for the node templates.

    Args:
        loader (jinja2.BaseLoader): defaults to the templates shipped in
            ``agentbaker/provision/templates``
    """
    if loader is None:
        loader = jinja2.PackageLoader("agentbaker", "provision/templates")
    env = jinja2.Environment(loader=loader,
                             undefined=jinja2.StrictUndefined,
                             autoescape=False,
                             keep_trailing_newline=True,
                             trim_blocks=True,
                             lstrip_blocks=True)
    env.filters["shellquote"] = shlex.quote
    env.filters["json"] = json.dumps
    env.filters["psquote"] = ps_quote
    return env


def bind(bundle, sources):
    """
    Merge named value sources into one template context.

    Args:
        bundle (TemplateBundle): the bundle the context is for
        sources (dict): source name -> mapping of values

    Every name may come from exactly one source.

    Raises:
        TemplateError if two sources bind the same name
    """
    context = {}
    origin = {}
    for source_name in sorted(sources):
        for key, value in sources[source_name].items():
            if key in context:
                raise TemplateError(
                    f"'{key}' is bound by both {origin[key]} and "
                    f"{source_name}", bundle=bundle.name)
            context[key] = value
            origin[key] = source_name
    return context


class RenderedFile:  # pylint: disable=too-few-public-methods
    """A rendered file and where it goes on the node"""

    def __init__(self, path, content, permissions="0644"):
        self.path = path
        self.content = content
        self.permissions = permissions

    def __repr__(self):
        return f"RenderedFile({self.path!r})"


class RenderedNode:  # pylint: disable=too-few-public-methods
    """
    The output of a render.

    Attributes:
        bundle (TemplateBundle): the bundle rendered
        files (list): of :class:`RenderedFile` in the order to write them
        cse_arguments (str): the arguments of the CSE command
    """

    def __init__(self, bundle, files, cse_arguments):
        self.bundle = bundle
        self.files = files
        self.cse_arguments = cse_arguments

    @property
    def os_type(self):
        return self.bundle.os_type


class TemplateRenderer:
    """
    Render template bundles with a jinja2 environment.

    Args:
        env (jinja2.Environment): as created by :func:`create_environment`
    """

    def __init__(self, env=None):
        self.env = env or create_environment()

    def _render(self, bundle, name, context):
        try:
            source, _, _ = self.env.loader.get_source(self.env, name)
            placeholders = meta.find_undeclared_variables(
                self.env.parse(source))
        except jinja2.TemplateNotFound as err:
            raise TemplateError(f"template {name} does not exist",
                                bundle=bundle.name, template=name) from err
        except jinja2.TemplateSyntaxError as err:
            raise TemplateError(f"template {name} is broken: {err}",
                                bundle=bundle.name, template=name) from err

        unbound = placeholders - set(context)
        if unbound:
            raise UnboundPlaceholderError(
                f"unbound placeholders in {name} of bundle {bundle.name}: "
                f"{', '.join(sorted(unbound))}",
                bundle=bundle.name, template=name, placeholders=unbound)

        try:
            return self.env.get_template(name).render(context)
        except jinja2.UndefinedError as err:
            raise UnboundPlaceholderError(
                f"{err} in {name} of bundle {bundle.name}",
                bundle=bundle.name, template=name) from err

    def render(self, bundle, addons, **sources):
        """
        Render a bundle.

        Args:
            bundle (TemplateBundle): the selected bundle
            addons (dict): insertion point -> AddonBlock or OMITTED, as
                returned by :func:`~agentbaker.provision.addons.compose_addons`
            sources (dict): named mappings of values to substitute

        Returns:
            RenderedNode

        Raises:
            TemplateError, UnboundPlaceholderError
        """
        for point in sorted(set(addons) - set(bundle.insertion_points)):
            if addons[point]:
                raise InsertionPointError(
                    f"template bundle {bundle.name} has no insertion point "
                    f"for {point}", bundle=bundle.name, insertion_point=point)

        missing = set(bundle.insertion_points) - set(addons)
        if missing:
            raise TemplateError(
                "no decision for insertion points "
                f"{', '.join(sorted(missing))}", bundle=bundle.name)

        context = bind(bundle, dict(sources, bundle=bundle.substitutions))

        snippets = {}
        addon_files = []
        for point in sorted(bundle.insertion_points):
            block = addons[point]
            if not block:
                snippets[ADDON_PREFIX + point] = ""
                continue
            addon = block.template
            snippets[ADDON_PREFIX + point] = self._render(
                bundle, addon.snippet, context).rstrip("\n")
            for tmpl in addon.files:
                addon_files.append(RenderedFile(
                    tmpl.path, self._render(bundle, tmpl.template, context),
                    tmpl.permissions))

        context = bind(bundle, {"values": context, "addons": snippets})
        files = [RenderedFile(tmpl.path,
                              self._render(bundle, tmpl.template, context),
                              tmpl.permissions)
                 for tmpl in bundle.files]
        files.extend(addon_files)

        cse_arguments = self._render(bundle, bundle.cse_template,
                                     context).strip()
        LOGGER.debug("rendered %d files with bundle %s", len(files),
                     bundle.name)
        return RenderedNode(bundle, files, cse_arguments)
