"""
agentbaker
==========

The main entry point for rendering agent node bootstrap artifacts.
Don't use it directly, instead install the package with setup.py.
It automatically creates an executable in your path.

"""
import argparse
import sys

from mach import mach1

from . import __version__
from .baker import initialize_template_generator
from .cli import write_artifacts, format_versions
from .config import load_config
from .errors import BakerError
from .util.logger import Logger

LOGGER = Logger(__name__)


@mach1()
class AgentBaker:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and decides which action should be taken
    """
    def __init__(self):
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default=3)

    def _get_version(self):
        print("%s version: %s" % (self.__class__.__name__, __version__))

    def _get_verbosity(self):
        pass

    def render(self, config: str, pool: str = None, output: str = "."):
        """
        Render the custom data and CSE command of an agent pool

        config - configuration file
        pool - the agent pool, may be omitted if the cluster has one pool
        output - the directory CustomData and CSECommand are written to
        """
        try:
            node_config = load_config(config, pool)
            baker = initialize_template_generator()
            bootstrapping = baker.get_node_bootstrapping(node_config)
        except BakerError as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(1)

        write_artifacts(bootstrapping, output)

    def versions(self):
        """
        List the kubernetes versions and the components known for them
        """
        baker = initialize_template_generator()
        for line in format_versions(baker.resolver):
            print(line)


def main():
    """
    run and execute agentbaker
    """
    k = AgentBaker()

    # Setting verbosity level
    # pylint: disable=no-member
    LOGGER.level = k.parser.parse_args().verbosity

    # the mach decorator analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
