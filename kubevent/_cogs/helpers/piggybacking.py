"""
Logging in to the cluster: finding the server and the credentials for it.

Only the simple cases are understood natively: the pod's service account,
and the kubeconfig files with the tokens, passwords or client certificates.
For anything fancier (the exec-plugins, the cloud auth-providers),
the client libraries do the authentication if they are installed
(``pip install kubevent[full-auth]``), and their results are borrowed.
"""
import dataclasses
import os
from collections.abc import Callable, Iterable
from typing import Any

import yaml

from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import credentials

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'
IN_CLUSTER_SERVER = 'https://kubernetes.default.svc'
DEFAULT_KUBECONFIG = '~/.kube/config'

LoginFn = Callable[..., credentials.ConnectionInfo | None]


def login(
        *,
        kubeconfig: str | None = None,
        context: str | None = None,
        server: str | None = None,
        logger: typedefs.Logger,
) -> credentials.ConnectionInfo:
    """
    Log in with the first method that finds the credentials.

    An explicit kubeconfig or context leaves no other choice. Otherwise,
    the service account is tried first, since the controller usually
    runs in the cluster, and then the client libraries & the kubeconfigs.
    """
    explicit = kubeconfig is not None or context is not None
    fns: list[LoginFn] = (
        [login_with_kubeconfig] if explicit else
        [login_with_service_account, login_via_pykube, login_via_client, login_with_kubeconfig]
    )
    for fn in fns:
        info = fn(kubeconfig=kubeconfig, context=context, logger=logger)
        if info is None:
            continue
        if server is not None:
            info = dataclasses.replace(info, server=server)
        logger.info(f"Logged in to {info.server} via {fn.__name__}().")
        return info
    raise credentials.LoginError("Ran out of connection credentials.")


def _read_text(path: str) -> str | None:
    if not os.path.exists(path):
        return None
    with open(path, encoding='utf-8') as f:
        return f.read().strip()


def login_with_service_account(*, logger: typedefs.Logger, **_: Any) -> credentials.ConnectionInfo | None:
    token = _read_text(os.path.join(SERVICE_ACCOUNT_DIR, 'token'))
    if token is None:
        return None

    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')
    namespace = _read_text(os.path.join(SERVICE_ACCOUNT_DIR, 'namespace'))
    logger.debug("Found the service account of the pod.")
    return credentials.ConnectionInfo(
        server=IN_CLUSTER_SERVER,
        ca_path=ca_path if os.path.exists(ca_path) else None,
        token=token or None,
        default_namespace=namespace or None,
    )


def _find_kubeconfigs(kubeconfig: str | None) -> list[str]:
    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    if not kubeconfig:
        kubeconfig = os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser(DEFAULT_KUBECONFIG)):
        kubeconfig = DEFAULT_KUBECONFIG
    paths = (kubeconfig or '').split(os.pathsep)
    return [os.path.expanduser(path.strip()) for path in paths if path.strip()]


def _index(items: Iterable[dict[str, Any]] | None, field: str, into: dict[str, Any]) -> None:
    # In the merged kubeconfigs, the first definition of a name wins.
    for item in items or []:
        into.setdefault(item['name'], item.get(field) or {})


def login_with_kubeconfig(
        *,
        kubeconfig: str | None = None,
        context: str | None = None,
        logger: typedefs.Logger,
        **_: Any,
) -> credentials.ConnectionInfo | None:
    """
    Read the credentials of the current (or given) context of the kubeconfigs.

    Several files can be given as in ``$KUBECONFIG``: they are merged.
    An absent or malformed file is an error, not a reason to skip it.
    The tokens of the auth-providers are used as they are, never refreshed.
    """
    paths = _find_kubeconfigs(kubeconfig)
    if not paths:
        return None

    contexts: dict[str, Any] = {}
    clusters: dict[str, Any] = {}
    users: dict[str, Any] = {}
    for path in paths:
        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
        context = context if context is not None else config.get('current-context')
        _index(config.get('contexts'), 'context', contexts)
        _index(config.get('clusters'), 'cluster', clusters)
        _index(config.get('users'), 'user', users)

    if context is None:
        raise credentials.LoginError("Current context is not set in kubeconfigs.")
    if context not in contexts:
        raise credentials.LoginError(f"Context {context!r} is not found in kubeconfigs.")
    ctx = contexts[context]
    cluster = clusters.get(ctx.get('cluster'), {})
    user = users.get(ctx.get('user'), {})
    provider = user.get('auth-provider', {}).get('config', {})

    logger.debug(f"Found the kubeconfig context {context!r}.")
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider.get('access-token'),
        default_namespace=ctx.get('namespace'),
    )


def login_via_pykube(*, logger: typedefs.Logger, **_: Any) -> credentials.ConnectionInfo | None:
    try:
        import pykube
    except ImportError:
        return None

    try:
        config = pykube.KubeConfig.from_service_account()
    except FileNotFoundError:
        try:
            config = pykube.KubeConfig.from_file()
        except (pykube.PyKubeError, FileNotFoundError):
            return None
    logger.debug("Pykube has found the credentials.")

    # The auth-providers put their fresh tokens into the config on the first request.
    if config.user.get('auth-provider'):
        pykube.HTTPClient(config).get(version='', base='/')
    provider = config.user.get('auth-provider', {}).get('config', {})

    # The data of the certificates are stored by pykube as the temporary files.
    ca, cert, pkey = (config.cluster.get('certificate-authority'),
                      config.user.get('client-certificate'),
                      config.user.get('client-key'))
    return credentials.ConnectionInfo(
        server=config.cluster.get('server'),
        ca_path=ca.filename() if ca else None,
        insecure=config.cluster.get('insecure-skip-tls-verify'),
        username=config.user.get('username'),
        password=config.user.get('password'),
        token=config.user.get('token') or provider.get('access-token'),
        certificate_path=cert.filename() if cert else None,
        private_key_path=pkey.filename() if pkey else None,
        default_namespace=config.namespace,
    )


def login_via_client(*, logger: typedefs.Logger, **_: Any) -> credentials.ConnectionInfo | None:
    try:
        import kubernetes.config
    except ImportError:
        return None

    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        try:
            kubernetes.config.load_kube_config()
        except kubernetes.config.ConfigException:
            return None
    logger.debug("The kubernetes client has found the credentials.")

    # The auth-providers hook into this call, so the header is taken, not the stored key.
    config = kubernetes.client.Configuration.get_default_copy()
    header: str | None = config.get_api_key_with_prefix('authorization')
    scheme, _, token = (header or '').rpartition(' ')  # RFC-7235, Appendix C.

    return credentials.ConnectionInfo(
        server=config.host,
        ca_path=config.ssl_ca_cert,
        insecure=not config.verify_ssl,
        username=config.username or None,
        password=config.password or None,
        scheme=scheme or None,
        token=token or None,
        certificate_path=config.cert_file,
        private_key_path=config.key_file,
    )
