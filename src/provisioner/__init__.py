"""Declarative provisioning of auxiliary resources and workload descriptors."""

from .descriptor import RoleSpec, WorkloadDescriptor, unique_name, unique_suffix
from .provisioner import ResourceProvisioner
from .resources import AuxiliaryResourceSet
from .scope import OwnedResources

__all__ = [
    "AuxiliaryResourceSet",
    "OwnedResources",
    "ResourceProvisioner",
    "RoleSpec",
    "WorkloadDescriptor",
    "unique_name",
    "unique_suffix",
]
