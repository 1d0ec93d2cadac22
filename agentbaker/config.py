"""
config
======

Read a node bootstrapping configuration from a YAML file.

The file holds the cluster and the render settings::

    cluster:
      location: southcentralus
      orchestrator:
        type: Kubernetes
        version: 1.15.7
      hosted_master:
        dns_prefix: uttestdom
      agent_pools:
        - name: agent2
          vm_size: Standard_DS1_v2
          os_type: Linux
      linux_profile:
        admin_username: azureuser
        ssh_public_keys:
          - ssh-rsa AAAA...
      service_principal:
        client_id: ClientID
        secret: Secret
    tenant_id: tenantID
    subscription_id: subID
    resource_group_name: resourceGroupName
    features:
      enable_dynamic_kubelet: true
"""
import yaml

from agentbaker.datamodel import (ClusterSpec, NodeBootstrappingConfiguration,
                                  CloudSpecConfig, KubernetesSpecConfig,
                                  AZURE_PUBLIC_CLOUD_SPEC)
from agentbaker.errors import ConfigurationError
from agentbaker.util.logger import Logger

LOGGER = Logger(__name__)

FEATURES = ("config_gpu_driver_if_needed",
            "enable_gpu_device_plugin_if_needed",
            "enable_dynamic_kubelet",
            "enable_nvidia")


def cloud_from_dict(data):
    """Build a CloudSpecConfig, missing keys default to the public cloud"""
    if not data:
        return AZURE_PUBLIC_CLOUD_SPEC
    public = AZURE_PUBLIC_CLOUD_SPEC.kubernetes_spec_config
    return CloudSpecConfig(
        cloud_name=data.get('cloud_name', AZURE_PUBLIC_CLOUD_SPEC.cloud_name),
        kubernetes_spec_config=KubernetesSpecConfig(
            kubernetes_image_base=data.get(
                'kubernetes_image_base', public.kubernetes_image_base),
            mcr_kubernetes_image_base=data.get(
                'mcr_kubernetes_image_base',
                public.mcr_kubernetes_image_base),
            kube_binaries_sas_url_base=data.get(
                'kube_binaries_sas_url_base',
                public.kube_binaries_sas_url_base)))


def config_from_dict(data, pool=None):
    """
    Build the NodeBootstrappingConfiguration of one pool.

    Args:
        data (dict): the parsed configuration file
        pool (str): the agent pool to render, may be omitted if the
            cluster has exactly one pool

    Raises:
        ConfigurationError if a required key is missing, the feature
        section is unknown or the pool does not exist
    """
    if not isinstance(data, dict) or 'cluster' not in data:
        raise ConfigurationError("the configuration has no cluster section",
                                 field="cluster")
    try:
        cluster = ClusterSpec.from_dict(data['cluster'])
    except KeyError as err:
        raise ConfigurationError(f"missing key {err} in the cluster section",
                                 field=err.args[0]) from err

    if pool is None:
        if len(cluster.agent_pool_profiles) != 1:
            raise ConfigurationError(
                "the cluster has %d agent pools, choose one" %
                len(cluster.agent_pool_profiles), field="agent_pools")
        agent_pool = cluster.agent_pool_profiles[0]
    else:
        agent_pool = cluster.get_agent_pool(pool)
        if agent_pool is None:
            raise ConfigurationError(f"no agent pool named '{pool}'",
                                     field="agent_pools")

    features = data.get('features') or {}
    unknown = set(features) - set(FEATURES)
    if unknown:
        raise ConfigurationError(
            f"unknown features: {', '.join(sorted(unknown))}",
            field="features")

    return NodeBootstrappingConfiguration(
        cluster, agent_pool,
        cloud_spec_config=cloud_from_dict(data.get('cloud')),
        tenant_id=data.get('tenant_id', ""),
        subscription_id=data.get('subscription_id', ""),
        resource_group_name=data.get('resource_group_name', ""),
        user_assigned_identity_client_id=data.get(
            'user_assigned_identity_client_id', ""),
        **features)


def load_config(path, pool=None):
    """
    Load the configuration file at path.

    Args:
        path (str): a YAML file
        pool (str): the agent pool to render
    """
    with open(path, 'r') as stream:
        try:
            data = yaml.safe_load(stream)
        except yaml.YAMLError as err:
            raise ConfigurationError(f"{path} is not valid YAML: {err}",
                                     field=path) from err

    LOGGER.debug("loaded configuration %s", path)
    return config_from_dict(data, pool)
