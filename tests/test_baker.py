"""
tests for agentbaker.baker

The rendering scenarios are compared against the artifacts stored in
tests/fixtures/<scenario>. A missing reference file fails the scenario,
set GENERATE_TEST_DATA=true to rewrite them after an intended change of
the templates.
"""
import base64
import os

import pytest

from agentbaker import datamodel
from agentbaker.baker import (initialize_template_generator, node_labels,
                              TemplateGenerator)
from agentbaker.cli import write_artifacts, CUSTOM_DATA, CSE_COMMAND
from agentbaker.datamodel import (AgentPoolProfile, K8sComponents,
                                  PrivateCluster)
from agentbaker.errors import (ConfigurationError, ResolutionError,
                               VersionError, InsertionPointError, MergeError)
from agentbaker.kubelet import DYNAMIC_KUBELET_CONFIG_FILE
from agentbaker.provision.addons import OMITTED
from agentbaker.provision.cloud_init import decode_custom_data
from agentbaker.provision.distro import HOSTS_CONFIG_AGENT
from agentbaker.versions import VersionComponentResolver, \
    freeze_component_table

from .testdata import (FIXTURES, SCENARIOS, base_config, windows_config,
                       temp_disk, temp_disk_containerd, raw_ubuntu,
                       private_cluster_hosts_agent, gpu_dedicated_vhd,
                       dynamic_kubelet, containerd_gpu_sku)

GENERATE_TEST_DATA = os.getenv("GENERATE_TEST_DATA", "") == "true"

PROVISION_SCRIPT = "/opt/azure/containers/provision.sh"
KUBELET_DEFAULTS = "/etc/default/kubelet"

TABLE = freeze_component_table({
    "1.9.0": {"pause": "oss/kubernetes/pause:1.1.0",
              "hyperkube": "hyperkube-amd64:v1.9.0"},
    "1.17.0": {"pause": "oss/kubernetes/pause:1.3.1"},
})


@pytest.fixture(scope="module")
def baker():
    return initialize_template_generator()


def make_config(version="1.15.7", updater=None):
    config = base_config(version)
    if updater is not None:
        updater(config)
    return config


def render_files(baker, config):
    """render a linux node and unpack its custom data"""
    bootstrapping = baker.get_node_bootstrapping(config)
    cloud_config, files = decode_custom_data(bootstrapping.custom_data)
    return bootstrapping, cloud_config, files


def check_fixture(case, bootstrapping):
    folder = os.path.join(FIXTURES, case)
    if GENERATE_TEST_DATA:
        write_artifacts(bootstrapping, folder)

    for name, content in ((CUSTOM_DATA, bootstrapping.custom_data),
                          (CSE_COMMAND, bootstrapping.cse_cmd)):
        path = os.path.join(folder, name)
        assert os.path.exists(path), \
            f"{path} is missing, run with GENERATE_TEST_DATA=true"
        with open(path) as fh:
            assert fh.read() == content, f"{case}/{name} differs"


@pytest.mark.parametrize("case,version,updater", SCENARIOS,
                         ids=[s[0] for s in SCENARIOS])
def test_scenarios(baker, case, version, updater):
    bootstrapping, cloud_config, files = render_files(
        baker, make_config(version, updater))

    assert cloud_config["ssh_authorized_keys"] == ["testsshkey"]
    assert files[PROVISION_SCRIPT].endswith("exit 0\n#EOF\n")
    for path, content in files.items():
        assert "{{" not in content and "{%" not in content, path
    assert PROVISION_SCRIPT in bootstrapping.cse_cmd

    check_fixture(case, bootstrapping)


def test_render_is_deterministic():
    first = initialize_template_generator().get_node_bootstrapping(
        make_config(updater=dynamic_kubelet))
    second = initialize_template_generator().get_node_bootstrapping(
        make_config(updater=dynamic_kubelet))
    assert first.custom_data == second.custom_data
    assert first.cse_cmd == second.cse_cmd


def test_payload_and_cmd(baker):
    config = make_config()
    bootstrapping = baker.get_node_bootstrapping(config)
    assert baker.get_node_bootstrapping_payload(config) == \
        bootstrapping.custom_data
    assert baker.get_node_bootstrapping_cmd(config) == bootstrapping.cse_cmd


def test_cse_command_arguments(baker):
    cmd = baker.get_node_bootstrapping_cmd(make_config())
    assert ("ADMINUSER=azureuser TENANT_ID=tenantID "
            "KUBERNETES_VERSION=1.15.7 "
            "HYPERKUBE_URL=k8s.gcr.io/hyperkube-amd64:v1.15.7 "
            "SUBSCRIPTION_ID=subID RESOURCE_GROUP=resourceGroupName "
            "LOCATION=southcentralus VM_TYPE=vmss SUBNET=subnet1 "
            "VIRTUAL_NETWORK=aks-vnet-07752737 "
            "VIRTUAL_NETWORK_RESOURCE_GROUP=MC_rg "
            "SERVICE_PRINCIPAL_CLIENT_ID=ClientID NETWORK_PLUGIN=kubenet "
            "CONTAINER_RUNTIME=docker "
            "USER_ASSIGNED_IDENTITY_ID=userAssignedID "
            "API_SERVER_NAME=uttestdom.hcp.southcentralus.azmk8s.io "
            "IS_VHD=true GPU_NODE=false CONFIG_GPU_DRIVER_IF_NEEDED=true "
            "ENABLE_GPU_DEVICE_PLUGIN_IF_NEEDED=false") in cmd
    assert "Secret" not in cmd


def test_default_node(baker):
    _, _, files = render_files(baker, make_config())
    main = files[PROVISION_SCRIPT]
    assert "ensureDocker" in main
    assert "ensureContainerd" not in main
    assert "NVIDIA" not in main
    assert "installDeps" not in main
    assert '"data-root": "/var/lib/docker"' in files["/etc/docker/daemon.json"]
    assert DYNAMIC_KUBELET_CONFIG_FILE not in files

    kubelet = files[KUBELET_DEFAULTS]
    assert "--max-pods=110" in kubelet
    assert "--pod-infra-container-image=" \
        "mcr.microsoft.com/oss/kubernetes/pause:1.2.0" in kubelet
    assert "--feature-gates=PodPriority=true," \
        "RotateKubeletServerCertificate=true,a=b,x=y" in kubelet
    assert "KUBELET_IMAGE=k8s.gcr.io/hyperkube-amd64:v1.15.7\n" in kubelet


def test_custom_hyperkube_from_117(baker):
    _, _, files = render_files(baker, make_config("1.17.7"))
    assert "KUBELET_IMAGE=k8s.gcr.io/hyperkube-amd64:v1.17.7\n" in \
        files[KUBELET_DEFAULTS]
    assert "pause:1.3.1" in files[KUBELET_DEFAULTS]


def test_temp_disk(baker):
    _, _, files = render_files(baker, make_config(updater=temp_disk))
    assert '"data-root": "/mnt/containers"' in \
        files["/etc/docker/daemon.json"]


def test_temp_disk_containerd(baker):
    bootstrapping, _, files = render_files(
        baker, make_config(updater=temp_disk_containerd))
    main = files[PROVISION_SCRIPT]
    assert "ensureContainerd" in main
    assert "ensureDocker" not in main
    assert "/etc/docker/daemon.json" not in files

    toml = files["/etc/containerd/config.toml"]
    assert 'root = "/mnt/containers"' in toml
    assert 'default_runtime_name = "runc"' in toml
    assert "--container-runtime=remote" in files[KUBELET_DEFAULTS]
    assert "/etc/systemd/system/kubelet.service.d/10-containerd.conf" in files
    assert "CONTAINER_RUNTIME=containerd" in bootstrapping.cse_cmd


def test_raw_ubuntu_installs_everything(baker):
    bootstrapping, _, files = render_files(baker,
                                           make_config(updater=raw_ubuntu))
    main = files[PROVISION_SCRIPT]
    assert "installDeps" in main
    assert "installMoby" in main
    assert "IS_VHD=false" in bootstrapping.cse_cmd


def test_hosts_config_agent(baker):
    _, _, files = render_files(
        baker, make_config("1.18.2", private_cluster_hosts_agent))
    assert files[PROVISION_SCRIPT].count(
        "systemctlEnableAndStart reconcile-private-hosts") == 1
    assert "KUBELET_IMAGE=k8s.gcr.io/hyperkube-amd64:v1.18.2\n" in \
        files[KUBELET_DEFAULTS]
    assert "pause:1.3.1" in files[KUBELET_DEFAULTS]
    assert "clusterFQDN=uttestdom.hcp.southcentralus.azmk8s.io" in \
        files["/opt/azure/containers/reconcilePrivateHosts.sh"]
    assert "/etc/systemd/system/reconcile-private-hosts.service" in files


def test_hosts_config_agent_is_off_by_default(baker):
    _, _, files = render_files(baker, make_config("1.18.2"))
    assert "reconcile-private-hosts" not in files[PROVISION_SCRIPT]
    assert "/opt/azure/containers/reconcilePrivateHosts.sh" not in files


def test_pool_enables_hosts_config_agent(baker):
    config = make_config("1.18.2")
    config.agent_pool_profile.kubernetes_config.private_cluster = \
        PrivateCluster(enable_hosts_config_agent=True)
    _, _, files = render_files(baker, config)
    assert "systemctlEnableAndStart reconcile-private-hosts" in \
        files[PROVISION_SCRIPT]


@pytest.mark.parametrize("pool_setting,enabled", [
    (None, True),
    (False, False),
])
def test_pool_hosts_config_agent_over_cluster(baker, pool_setting, enabled):
    config = make_config("1.18.2", private_cluster_hosts_agent)
    config.agent_pool_profile.kubernetes_config.private_cluster = \
        PrivateCluster(enable_hosts_config_agent=pool_setting)
    addon = baker.build_context(config).addons[HOSTS_CONFIG_AGENT]
    assert (addon is not OMITTED) == enabled


def test_gpu_dedicated_vhd(baker):
    bootstrapping, _, files = render_files(
        baker, make_config(updater=gpu_dedicated_vhd))
    main = files[PROVISION_SCRIPT]
    assert "NVIDIA driver" not in main
    assert "cp /etc/kubernetes/addons/nvidia-device-plugin.yaml" in main
    assert "installNvidiaContainerRuntime" in main
    assert "agentpool: agent2" in \
        files["/etc/kubernetes/addons/nvidia-device-plugin.yaml"]
    assert '"default-runtime": "nvidia"' in files["/etc/docker/daemon.json"]
    assert "accelerator=nvidia" in files[KUBELET_DEFAULTS]
    assert "GPU_NODE=true CONFIG_GPU_DRIVER_IF_NEEDED=false " \
        "ENABLE_GPU_DEVICE_PLUGIN_IF_NEEDED=true" in bootstrapping.cse_cmd


def test_gpu_driver_on_containerd(baker):
    _, _, files = render_files(baker, make_config(updater=containerd_gpu_sku))
    main = files[PROVISION_SCRIPT]
    assert 'echo "installing the NVIDIA driver on" Standard_NC6\n' in main
    assert main.index("ensureContainerd") < main.index("NVIDIA driver")
    assert 'default_runtime_name = "nvidia"' in \
        files["/etc/containerd/config.toml"]

    _, _, baseline = render_files(baker, make_config())
    for path in ("/etc/kubernetes/azure.json",
                 "/opt/azure/containers/provision_source.sh",
                 "/etc/systemd/system/kubelet.service"):
        assert files[path] == baseline[path], path


def test_gpu_vhd_loads_cached_driver(baker):
    config = make_config(updater=gpu_dedicated_vhd)
    config.config_gpu_driver_if_needed = True
    _, _, files = render_files(baker, config)
    assert "the NVIDIA driver is part of the image" in files[PROVISION_SCRIPT]


def test_dynamic_kubelet(baker):
    _, _, files = render_files(baker, make_config(updater=dynamic_kubelet))
    kubelet = files[KUBELET_DEFAULTS]
    assert f"--config={DYNAMIC_KUBELET_CONFIG_FILE}" in kubelet
    assert "--max-pods" not in kubelet
    assert '"maxPods": 110' in files[DYNAMIC_KUBELET_CONFIG_FILE]
    assert "chmod 0644 /etc/default/kubeletconfig.json" in \
        files[PROVISION_SCRIPT]


def test_pool_flags_win_over_cluster(baker):
    config = make_config()
    config.cluster_kubernetes_config.kubelet_config = {
        "--max-pods": "30", "--v": "2", "--feature-gates": "a=c,z=true"}
    config.agent_pool_profile.kubernetes_config.kubelet_config = {
        "--max-pods": "110", "--cluster-dns": "10.0.0.10",
        "--feature-gates": "z=false"}
    flags = baker.build_context(config).kubelet_flags
    assert flags.get("--max-pods") == "110"
    assert flags.get("--v") == "2"
    assert flags.get("--feature-gates") == "a=c,z=false"


def test_pool_removes_cluster_flag(baker):
    config = make_config()
    config.cluster_kubernetes_config.kubelet_config = {"--v": "2"}
    config.agent_pool_profile.kubernetes_config.kubelet_config = {"--v": None}
    assert "--v" not in baker.build_context(config).kubelet_flags.as_dict()


def test_cluster_dns_without_flag(baker):
    config = make_config()
    config.agent_pool_profile.kubernetes_config.kubelet_config = {}
    config.cluster_kubernetes_config.dns_service_ip = "10.2.0.10"
    assert baker.build_context(config).cluster_dns == "10.2.0.10"


def test_cluster_dns_list(baker):
    config = make_config()
    config.agent_pool_profile.kubernetes_config.kubelet_config[
        "--cluster-dns"] = "10.0.0.10,10.0.0.11"
    context = baker.build_context(config)
    assert context.cluster_dns == "10.0.0.10"
    assert context.kubelet_flags.get("--cluster-dns") == \
        "10.0.0.10,10.0.0.11"


def test_pool_image_bases_win_over_cluster(baker):
    config = make_config()
    config.cluster_kubernetes_config.mcr_kubernetes_image_base = \
        "cluster.example/"
    kc = config.agent_pool_profile.kubernetes_config
    kc.mcr_kubernetes_image_base = "myregistry.example/"
    kc.kubernetes_image_base = "myregistry.example/k8s/"
    components = baker.build_context(config).components
    assert components.pod_infra_container_image_url == \
        "myregistry.example/oss/kubernetes/pause:1.2.0"
    assert components.hyperkube_image_url == \
        "myregistry.example/k8s/hyperkube-amd64:v1.15.7"


def test_pool_custom_hyperkube(baker):
    config = make_config("1.17.7")
    config.cluster_kubernetes_config.custom_hyperkube_image = ""
    config.agent_pool_profile.kubernetes_config.custom_hyperkube_image = \
        "registry.example/hyperkube:v1.17.7"
    _, _, files = render_files(baker, config)
    assert "KUBELET_IMAGE=registry.example/hyperkube:v1.17.7\n" in \
        files[KUBELET_DEFAULTS]


def test_shell_values_are_quoted(baker):
    config = make_config()
    config.agent_pool_profile.name = 'agent2"; reboot; echo "$(id)'
    config.cluster.linux_profile.admin_username = "azure user"
    _, _, files = render_files(baker, config)
    main = files[PROVISION_SCRIPT]
    assert "echo provisioning pool 'agent2\"; reboot; echo \"$(id)' " \
        "size Standard_DS1_v2 of uttestdom.hcp.southcentralus.azmk8s.io " \
        "with kubernetes 1.15.7\n" in main
    assert "chage -l 'azure user'\n" in \
        files["/opt/azure/containers/provision_configs.sh"]


def test_acc_ignores_gpu_flags(baker):
    """
    A bundle without GPU support renders the same, no matter the GPU
    features.
    """
    renders = []
    for enabled in (True, False):
        config = make_config()
        config.agent_pool_profile.distro = datamodel.ACC_1604
        config.agent_pool_profile.vm_size = "Standard_NC6"
        config.config_gpu_driver_if_needed = enabled
        config.enable_nvidia = enabled
        renders.append(baker.get_node_bootstrapping(config))

    assert renders[0].custom_data == renders[1].custom_data
    assert renders[0].cse_cmd == renders[1].cse_cmd
    assert "GPU_NODE" not in renders[0].cse_cmd
    _, files = decode_custom_data(renders[0].custom_data)
    assert "NVIDIA" not in files[PROVISION_SCRIPT]
    assert "accelerator=nvidia" not in files[KUBELET_DEFAULTS]


def test_acc_device_plugin_has_no_insertion_point(baker):
    config = make_config()
    config.agent_pool_profile.distro = datamodel.ACC_1604
    config.agent_pool_profile.vm_size = "Standard_NC6"
    config.enable_gpu_device_plugin_if_needed = True
    with pytest.raises(InsertionPointError) as err:
        baker.get_node_bootstrapping(config)
    assert err.value.bundle == "acc-16.04"


def test_windows_node(baker):
    config = windows_config()
    bootstrapping = baker.get_node_bootstrapping(config)
    script = base64.b64decode(bootstrapping.custom_data).decode()

    assert "$global:KubeBinariesPackageSASURL = 'https://acs-mirror." \
           "azureedge.net/kubernetes/v1.16.10/windowszip/" \
           "v1.16.10-1int.zip'" in script
    assert "$global:AgentUser = 'azureuser'" in script
    assert "'--max-pods=110'" in script
    assert "p@ss" not in script
    assert "{{" not in script

    cmd = bootstrapping.cse_cmd
    assert cmd.startswith("powershell.exe")
    assert "-MasterIP ''uttestdom.hcp.southcentralus.azmk8s.io''" in cmd
    assert "-KubeDnsServiceIp ''10.0.0.10''" in cmd
    assert "-AgentKey ''win1''" in cmd
    assert "p@ss" not in cmd


def test_windows_ignores_linux_only_addons(baker):
    config = windows_config()
    config.enable_dynamic_kubelet = True
    private_cluster_hosts_agent(config)
    bootstrapping = baker.get_node_bootstrapping(config)
    script = base64.b64decode(bootstrapping.custom_data).decode()
    assert "'--max-pods=110'" in script
    assert "reconcile-private-hosts" not in script


def test_windows_needs_credentials(baker):
    config = windows_config()
    config.cluster.windows_profile.admin_password = ""
    with pytest.raises(ConfigurationError) as err:
        baker.get_node_bootstrapping(config)
    assert err.value.field == "windows_profile"


def test_node_labels():
    config = make_config()
    config.agent_pool_profile.custom_node_labels = {"team": "ml",
                                                    "env": "dev"}
    assert node_labels(config, gpu_node=True) == (
        "kubernetes.azure.com/role=agent,agentpool=agent2,"
        "storageprofile=managed,"
        "kubernetes.azure.com/cluster=resourceGroupName,"
        "accelerator=nvidia,env=dev,team=ml")


def set_orchestrator(config):
    config.cluster.orchestrator_profile.orchestrator_type = "DCOS"


def drop_ssh_keys(config):
    config.cluster.linux_profile.ssh_public_keys = []


def drop_dns_prefix(config):
    config.cluster.hosted_master_profile.dns_prefix = ""


def drop_client_id(config):
    config.cluster.service_principal_profile.client_id = ""


def foreign_pool(config):
    config.agent_pool_profile = AgentPoolProfile("other")


def bad_subnet(config):
    config.agent_pool_profile.vnet_subnet_id = "subnet1"


def bad_dns(config):
    config.agent_pool_profile.kubernetes_config.kubelet_config[
        "--cluster-dns"] = "kube-dns"


def bad_dns_list(config):
    config.agent_pool_profile.kubernetes_config.kubelet_config[
        "--cluster-dns"] = "10.0.0.10,kube-dns"


def unknown_runtime(config):
    config.agent_pool_profile.kubernetes_config.container_runtime = "cri-o"


@pytest.mark.parametrize("updater,field", [
    (set_orchestrator, "orchestrator_profile.orchestrator_type"),
    (drop_ssh_keys, "linux_profile.ssh_public_keys"),
    (drop_dns_prefix, "hosted_master_profile.dns_prefix"),
    (drop_client_id, "service_principal_profile.client_id"),
    (foreign_pool, "agent_pool_profile"),
    (bad_subnet, "agent_pool_profile.vnet_subnet_id"),
    (bad_dns, "kubelet_config.--cluster-dns"),
    (bad_dns_list, "kubelet_config.--cluster-dns"),
    (unknown_runtime, "kubernetes_config.container_runtime"),
])
def test_configuration_errors(baker, updater, field):
    with pytest.raises(ConfigurationError) as err:
        baker.get_node_bootstrapping(make_config(updater=updater))
    assert err.value.field == field


def test_malformed_feature_gates(baker):
    config = make_config()
    config.cluster_kubernetes_config.kubelet_config = {
        "--feature-gates": "broken"}
    with pytest.raises(MergeError):
        baker.get_node_bootstrapping(config)


def test_117_needs_custom_hyperkube(baker):
    config = make_config("1.17.7")
    config.cluster_kubernetes_config.custom_hyperkube_image = ""
    with pytest.raises(ResolutionError) as err:
        baker.get_node_bootstrapping(config)
    assert err.value.field == "hyperkube"


def test_unknown_version(baker):
    with pytest.raises(ResolutionError) as err:
        baker.get_node_bootstrapping(make_config("1.99.0"))
    assert err.value.field == "orchestrator_version"


def test_malformed_version(baker):
    config = make_config()
    config.cluster.orchestrator_profile.orchestrator_version = "1.15"
    with pytest.raises(VersionError):
        baker.get_node_bootstrapping(config)


def test_pre_resolved_components(baker):
    config = make_config("1.99.0")
    config.k8s_components = K8sComponents(
        pod_infra_container_image_url="registry.example/pause:9",
        hyperkube_image_url="registry.example/hyperkube:v1.99.0")
    _, _, files = render_files(baker, config)
    kubelet = files[KUBELET_DEFAULTS]
    assert "KUBELET_IMAGE=registry.example/hyperkube:v1.99.0\n" in kubelet
    assert "--pod-infra-container-image=registry.example/pause:9" in kubelet


def test_pre_resolved_components_must_be_complete(baker):
    config = make_config()
    config.k8s_components = K8sComponents(
        pod_infra_container_image_url="registry.example/pause:9")
    with pytest.raises(ResolutionError) as err:
        baker.get_node_bootstrapping(config)
    assert err.value.field == "hyperkube"


def test_hyperkube_gating_with_injected_table():
    baker = TemplateGenerator(VersionComponentResolver(TABLE))

    config = make_config("1.9.0")
    config.cluster_kubernetes_config.custom_hyperkube_image = \
        "registry.example/hyperkube:custom"
    context = baker.build_context(config)
    assert context.components.hyperkube_image_url == \
        "k8s.gcr.io/hyperkube-amd64:v1.9.0"

    context = baker.build_context(make_config("1.17.0"))
    assert context.components.hyperkube_image_url == \
        "k8s.gcr.io/hyperkube-amd64:v1.17.0"
    assert context.components.pod_infra_container_image_url == \
        "mcr.microsoft.com/oss/kubernetes/pause:1.3.1"


def test_distro_changes_only_its_templates(baker):
    config = make_config()
    _, _, xenial = render_files(baker, config)
    config.agent_pool_profile.distro = datamodel.AKS_UBUNTU_1804
    bootstrapping, _, bionic = render_files(baker, config)

    assert set(xenial) == set(bionic)
    changed = sorted(p for p in xenial if xenial[p] != bionic[p])
    assert changed == ["/opt/azure/containers/provision_installs.sh"]
    assert bootstrapping.cse_cmd == baker.get_node_bootstrapping_cmd(
        make_config())
