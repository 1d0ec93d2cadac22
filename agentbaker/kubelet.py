"""
kubelet
=======

Merge layered kubelet flag mappings into the flags of one node.

Layers are plain dicts ordered from lowest to highest precedence, e.g.
engine defaults, cluster flags, pool flags. A key missing from a layer is
inherited, a key set to ``None`` is removed. ``--feature-gates`` is merged
gate by gate instead of being replaced as a whole.

Example:
    >>> merged = KubeletFlagMerger().merge(
    ...     {"--feature-gates": "a=b, x=y", "--max-pods": "30"},
    ...     {"--feature-gates": "a=c"})
    >>> merged.feature_gates
    {'a': 'c', 'x': 'y'}
    >>> merged.to_flag_string()
    '--feature-gates=a=c,x=y --max-pods=30'
"""
import json

from agentbaker.errors import MergeError

FEATURE_GATES = "--feature-gates"

CONTAINERD_KUBELET_FLAGS = {
    "--container-runtime": "remote",
    "--runtime-request-timeout": "15m",
    "--container-runtime-endpoint": "unix:///run/containerd/containerd.sock",
}

DYNAMIC_KUBELET_CONFIG_FILE = "/etc/default/kubeletconfig.json"
DYNAMIC_KUBELET_CONFIG_DIR = "/var/lib/kubelet"


def parse_feature_gates(value, layer=None):
    """Parse ``"a=true, b=false"`` into ``{"a": "true", "b": "false"}``.

    Whitespace around the separators is dropped, so are empty entries.

    Raises:
        MergeError if an entry is not of the form key=value
    """
    gates = {}
    for entry in (value or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, val = entry.partition("=")
        key, val = key.strip(), val.strip()
        if not sep or not key or not val or "=" in val:
            raise MergeError(f"malformed feature gate '{entry}'",
                             entry=entry, layer=layer)
        gates[key] = val
    return gates


def serialize_feature_gates(gates):
    """The canonical string form of a feature gate mapping, sorted by name"""
    return ",".join(f"{key}={gates[key]}" for key in sorted(gates))


class MergedKubeletFlags:
    """
    The result of a merge: the flags, with the feature gates kept as a
    mapping until the flags are serialized.
    """

    def __init__(self, flags, feature_gates):
        self.flags = flags
        self.feature_gates = feature_gates

    def get(self, key, default=None):
        if key == FEATURE_GATES:
            if not self.feature_gates:
                return default
            return serialize_feature_gates(self.feature_gates)
        return self.flags.get(key, default)

    def as_dict(self):
        """All flags with the feature gates serialized"""
        flags = dict(self.flags)
        if self.feature_gates:
            flags[FEATURE_GATES] = serialize_feature_gates(self.feature_gates)
        return flags

    def to_flag_string(self, exclude=()):
        """Render ``--key=value`` pairs sorted by key."""
        flags = self.as_dict()
        return " ".join(f"{key}={flags[key]}" for key in sorted(flags)
                        if key not in exclude)

    def __eq__(self, other):
        return (isinstance(other, MergedKubeletFlags) and
                self.as_dict() == other.as_dict())


class KubeletFlagMerger:  # pylint: disable=too-few-public-methods
    """Merge flag layers, lowest precedence first."""

    def merge(self, *layers):
        """
        Args:
            layers (dict): flag mappings, None entries are skipped

        Returns:
            MergedKubeletFlags

        Raises:
            MergeError if a feature gate value cannot be parsed
        """
        flags = {}
        gates = {}
        for idx, layer in enumerate(layers):
            if not layer:
                continue
            for key, value in layer.items():
                if key == FEATURE_GATES:
                    if value is None:
                        gates = {}
                    else:
                        gates.update(parse_feature_gates(value, layer=idx))
                elif value is None:
                    flags.pop(key, None)
                else:
                    flags[key] = str(value)
        return MergedKubeletFlags(flags, gates)


def _as_bool(value):
    return str(value).lower() == "true"


def _as_list(value):
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_map(value):
    result = {}
    for item in _as_list(value):
        key, _, val = item.partition("=")
        result[key.strip()] = val.strip()
    return result


def _eviction_map(value):
    # memory.available<750Mi,nodefs.available<10%
    result = {}
    for item in _as_list(value):
        key, _, val = item.partition("<")
        result[key] = val
    return result


# flag -> (KubeletConfiguration field, converter)
KUBELET_CONFIG_FIELDS = {
    "--address": ("address", str),
    "--anonymous-auth": ("authentication.anonymous.enabled", _as_bool),
    "--authentication-token-webhook": ("authentication.webhook.enabled",
                                       _as_bool),
    "--authorization-mode": ("authorization.mode", str),
    "--cgroups-per-qos": ("cgroupsPerQOS", _as_bool),
    "--client-ca-file": ("authentication.x509.clientCAFile", str),
    "--cluster-dns": ("clusterDNS", _as_list),
    "--cluster-domain": ("clusterDomain", str),
    "--enforce-node-allocatable": ("enforceNodeAllocatable", _as_list),
    "--event-qps": ("eventRecordQPS", int),
    "--eviction-hard": ("evictionHard", _eviction_map),
    "--image-gc-high-threshold": ("imageGCHighThresholdPercent", int),
    "--image-gc-low-threshold": ("imageGCLowThresholdPercent", int),
    "--kube-reserved": ("kubeReserved", _as_map),
    "--max-pods": ("maxPods", int),
    "--node-status-update-frequency": ("nodeStatusUpdateFrequency", str),
    "--pod-manifest-path": ("staticPodPath", str),
    "--pod-max-pids": ("podPidsLimit", int),
    "--protect-kernel-defaults": ("protectKernelDefaults", _as_bool),
    "--read-only-port": ("readOnlyPort", int),
    "--resolv-conf": ("resolvConf", str),
    "--rotate-certificates": ("rotateCertificates", _as_bool),
    "--streaming-connection-idle-timeout": ("streamingConnectionIdleTimeout",
                                            str),
    "--system-reserved": ("systemReserved", _as_map),
    "--tls-cert-file": ("tlsCertFile", str),
    "--tls-cipher-suites": ("tlsCipherSuites", _as_list),
    "--tls-private-key-file": ("tlsPrivateKeyFile", str),
}


def _set_path(config, path, value):
    *parents, leaf = path.split(".")
    for parent in parents:
        config = config.setdefault(parent, {})
    config[leaf] = value


def get_dynamic_kubelet_config(merged):
    """
    Split the merged flags for a kubelet running off a config file.

    Args:
        merged (MergedKubeletFlags)

    Returns:
        a tuple of the flags which stay on the command line
        (MergedKubeletFlags) and the KubeletConfiguration as JSON text

    Raises:
        MergeError if a flag value does not fit its config field
    """
    config = {
        "kind": "KubeletConfiguration",
        "apiVersion": "kubelet.config.k8s.io/v1beta1",
    }
    remaining = {}
    for key, value in merged.flags.items():
        if key not in KUBELET_CONFIG_FIELDS:
            remaining[key] = value
            continue
        path, convert = KUBELET_CONFIG_FIELDS[key]
        try:
            _set_path(config, path, convert(value))
        except ValueError as err:
            raise MergeError(f"cannot convert {key}={value}: {err}",
                             entry=key, layer="dynamic kubelet") from err

    if merged.feature_gates:
        config["featureGates"] = {key: _as_bool(val) for key, val
                                  in sorted(merged.feature_gates.items())}

    remaining["--config"] = DYNAMIC_KUBELET_CONFIG_FILE
    remaining["--dynamic-config-dir"] = DYNAMIC_KUBELET_CONFIG_DIR
    return (MergedKubeletFlags(remaining, {}),
            json.dumps(config, indent=4, sort_keys=True))
