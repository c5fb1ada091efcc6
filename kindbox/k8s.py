"""Kubernetes API client construction from kubeconfig documents."""

from __future__ import annotations

import typing as typ

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kindbox.errors import CredentialError

_REQUIRED_SECTIONS = ("clusters", "contexts", "users")


def load_kubeconfig(cluster_name: str, document: str) -> dict[str, typ.Any]:
    """Parse a kubeconfig document into a plain mapping.

    Raises
    ------
    CredentialError
        If the document is not YAML, not a mapping, or lacks the
        ``clusters``, ``contexts`` or ``users`` sections.

    """
    try:
        data = YAML(typ="safe").load(document)
    except YAMLError as exc:
        raise CredentialError.malformed(cluster_name, str(exc)) from exc

    if not isinstance(data, dict):
        raise CredentialError.malformed(cluster_name, "document is not a mapping")
    if missing := [key for key in _REQUIRED_SECTIONS if not data.get(key)]:
        detail = f"missing section(s): {', '.join(missing)}"
        raise CredentialError.malformed(cluster_name, detail)
    return data


def build_api_client(cluster_name: str, document: str) -> k8s_client.ApiClient:
    """Return an API client bound to the credentials in ``document``.

    Raises
    ------
    CredentialError
        If the document is malformed or the client cannot be configured.

    """
    config_dict = load_kubeconfig(cluster_name, document)
    try:
        return k8s_config.new_client_from_config_dict(
            config_dict=config_dict, persist_config=False
        )
    except (ConfigException, ValueError, KeyError, TypeError) as exc:
        raise CredentialError.malformed(cluster_name, str(exc)) from exc
