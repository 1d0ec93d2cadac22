"""
This module packages a rendered node into its custom data, and composes
the CSE command which runs it.

Linux nodes get a cloud-config which writes the provision scripts and
configuration files, the CSE command waits for the main script to be
complete and runs it. Windows nodes get the setup script itself as custom
data, the CSE command copies it to a ``.ps1`` file and invokes it.

Both functions are pure, the output depends on nothing but the input.
"""
import base64
import email
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import yaml

from agentbaker import PROVISION_LOG
from agentbaker.datamodel import WINDOWS
from agentbaker.errors import TemplateError

# a fixed boundary, a random one would change the payload on every render
MIME_BOUNDARY = "==============agentbaker-node-bootstrap=="

CUSTOM_DATA_FILE = "%SYSTEMDRIVE%\\AzureData\\CustomData.bin"
WINDOWS_CSE_LOG = "%SYSTEMDRIVE%\\AzureData\\CustomDataSetupScript.log"

LINUX_CSE_COMMAND = (
    'echo $(date),$(hostname); '
    'for i in $(seq 1 1200); do '
    'grep -Fq "EOF" {entrypoint} && break; '
    'if [ $i -eq 1200 ]; then exit 100; else sleep 1; fi; '
    'done; '
    '{arguments} '
    '/usr/bin/nohup /bin/bash -c "/bin/bash {entrypoint} >> {log} 2>&1"')

WINDOWS_CSE_COMMAND = (
    'powershell.exe -ExecutionPolicy Unrestricted -command "'
    "$arguments = '{arguments}';"
    "$inputFile = '{custom_data}';"
    "$outputFile = '{entrypoint}';"
    "Copy-Item $inputFile $outputFile;"
    "Invoke-Expression('{{0}} {{1}}' -f $outputFile, $arguments);"
    '" > {log} 2>&1; exit $LASTEXITCODE')


class BaseInit:
    """
    Args:
        rendered (RenderedNode): the output of the template renderer

    Attributes:
        cloud_config_data       the text/cloud-config data written for
                                Linux nodes
    """
    def __init__(self, rendered):
        self.rendered = rendered
        self._cloud_config_data = {}

    @property
    def entrypoint(self):
        return self.rendered.bundle.entrypoint

    def custom_data(self):
        """the base64 encoded custom data"""
        return base64.b64encode(str(self).encode()).decode()

    def cse_command(self):
        raise NotImplementedError


class LinuxNodeInit(BaseInit):
    """
    Custom data of a Linux node.

    Args:
        rendered (RenderedNode)
        ssh_public_keys (list): public keys authorized for the admin user
    """
    def __init__(self, rendered, ssh_public_keys=()):
        super().__init__(rendered)
        self._cloud_config_data['write_files'] = []

        for rendered_file in rendered.files:
            self.write_file(rendered_file.path, rendered_file.content,
                            permissions=rendered_file.permissions)

        if ssh_public_keys:
            self.add_ssh_public_keys(ssh_public_keys)

    def write_file(self, path, content, owner="root", group="root",
                   permissions="0600", encoder=base64.b64encode):
        """
        writes a file to the instance
        path: e.g. /etc/kubernetes/azure.json
        content: string of the content of the file
        owner: e.g. root
        group: e.g. root
        permissions: e.g. "0644", as string
        encoder: Optional encoder to use for the needed base64 encoding
        """
        data = {
            "path": path,
            "owner": owner + ":" + group,
            "encoding": "b64",
            "permissions": permissions,
            "content": encoder(content.encode()).decode()
        }
        self._cloud_config_data['write_files'].append(data)

    def add_ssh_public_keys(self, keys):
        """authorize the public keys (OpenSSH format strings)"""
        self._cloud_config_data["ssh_authorized_keys"] = list(keys)

    def cse_command(self):
        return LINUX_CSE_COMMAND.format(
            entrypoint=self.entrypoint,
            arguments=self.rendered.cse_arguments,
            log=PROVISION_LOG)

    def __str__(self):
        """
        The cloud-config as a MIME multipart message.
        """
        userdata = MIMEMultipart(boundary=MIME_BOUNDARY)

        config = MIMEText(yaml.dump(self._cloud_config_data,
                                    default_flow_style=False),
                          _subtype='cloud-config')
        config.add_header('Content-Disposition', 'attachment')
        userdata.attach(config)

        return userdata.as_string()


class WindowsNodeInit(BaseInit):
    """
    Custom data of a Windows node: the setup script.
    """
    def __init__(self, rendered):
        super().__init__(rendered)
        if len(rendered.files) != 1:
            raise TemplateError(
                "a windows bundle renders exactly one setup script, got "
                f"{len(rendered.files)} files", bundle=rendered.bundle.name)
        self.script = rendered.files[0].content

    def cse_command(self):
        # the arguments are wrapped in another single quoted string
        return WINDOWS_CSE_COMMAND.format(
            arguments=self.rendered.cse_arguments.replace("'", "''"),
            custom_data=CUSTOM_DATA_FILE,
            entrypoint=self.entrypoint,
            log=WINDOWS_CSE_LOG)

    def __str__(self):
        return self.script


def get_node_init(rendered, ssh_public_keys=()):
    """Return the payload encoder for the OS of the rendered node"""
    if rendered.os_type == WINDOWS:
        return WindowsNodeInit(rendered)
    return LinuxNodeInit(rendered, ssh_public_keys)


def decode_custom_data(custom_data):
    """
    Unpack the custom data of a Linux node.

    Returns:
        a tuple of the cloud-config (dict) and the written files as a
        dict of path -> content
    """
    message = email.message_from_string(
        base64.b64decode(custom_data).decode())
    part = message.get_payload()[0]
    cloud_config = yaml.safe_load(part.get_payload(decode=True).decode())
    files = {}
    for entry in cloud_config.get('write_files', []):
        files[entry['path']] = base64.b64decode(entry['content']).decode()
    return cloud_config, files
