"""
cli.py
======

misc functions of the command line interface, usually called from
``agentbaker.agentbaker.AgentBaker``.

Don't use directly
"""
import os

from .util.logger import Logger

LOGGER = Logger(__name__)

CUSTOM_DATA = "CustomData"
CSE_COMMAND = "CSECommand"


def write_artifacts(bootstrapping, output):
    """
    Write the custom data and the CSE command of a node.

    Args:
        bootstrapping (NodeBootstrapping): the rendered artifacts
        output (str): the directory to write to, created if missing

    Returns:
        the paths written
    """
    os.makedirs(output, exist_ok=True)
    paths = []
    for name, content in ((CUSTOM_DATA, bootstrapping.custom_data),
                          (CSE_COMMAND, bootstrapping.cse_cmd)):
        path = os.path.join(output, name)
        with open(path, "w") as fh:
            fh.write(content)
        paths.append(path)
        LOGGER.success("wrote %s", path)
    return paths


def format_versions(resolver):
    """One line per supported version with the component kinds it has"""
    lines = []
    for version in resolver.versions:
        kinds = sorted(resolver.table[version])
        lines.append(f"{version}: {', '.join(kinds)}")
    return lines
