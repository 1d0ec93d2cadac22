"""

.. _templates:

agentbaker.provision.templates
------------------------------

cse_main.sh
~~~~~~~~~~~

The main provision script of Linux nodes. It is written to
``/opt/azure/containers/provision.sh`` via ``cloud-init`` together with
the helper, install and config scripts it sources, and run by the custom
script extension (CSE). Optional blocks are rendered into its insertion
points, see :py:mod:`agentbaker.provision.addons`.

.. literalinclude:: ../agentbaker/provision/templates/linux/cse_main.sh.j2
   :language: shell

kuberneteswindowssetup.ps1
~~~~~~~~~~~~~~~~~~~~~~~~~~

The setup script of Windows nodes, delivered as the custom data and
invoked by the CSE command.

.. literalinclude:: ../agentbaker/provision/templates/windows/kuberneteswindowssetup.ps1.j2
   :language: powershell

"""
