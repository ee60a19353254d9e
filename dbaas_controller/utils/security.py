"""
Generation of database user passwords and the operator secrets holding them.
"""
import secrets
import string
from typing import Dict, Iterable, Optional

from dbaas_controller.config.logging import get_logger
from dbaas_controller.models.params import PMMParams

logger = get_logger(__name__)

PASSWORD_LENGTH = 24
_ALPHABET = string.ascii_letters + string.digits

# Keys the PXC operator expects in the users secret.
PXC_SECRET_KEYS = ("root", "xtrabackup", "monitor", "clustercheck", "proxyadmin", "operator", "replication")

# Fixed PSMDB system user names; passwords are generated per cluster.
PSMDB_USERS = {
    "MONGODB_BACKUP": "backup",
    "MONGODB_CLUSTER_ADMIN": "clusterAdmin",
    "MONGODB_CLUSTER_MONITOR": "clusterMonitor",
    "MONGODB_USER_ADMIN": "userAdmin",
}


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """
    Generate a random alphanumeric password.

    Args:
        length: Password length (default: 24)

    Returns:
        Random password drawn from letters and digits
    """
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _generate(keys: Iterable[str]) -> Dict[str, str]:
    return {key: generate_password() for key in keys}


def generate_pxc_secret(pmm: Optional[PMMParams] = None) -> Dict[str, str]:
    """Passwords for every PXC system user, plus PMM credentials when monitoring is on."""
    data = _generate(PXC_SECRET_KEYS)
    if pmm is not None:
        data["pmmserver"] = pmm.password
    logger.debug("pxc_secret_generated", keys=sorted(data))
    return data


def generate_psmdb_secret(pmm: Optional[PMMParams] = None) -> Dict[str, str]:
    """
    Users and passwords for the PSMDB system users.

    User names are fixed by role; only the passwords are random.
    """
    data: Dict[str, str] = {}
    for prefix, user in PSMDB_USERS.items():
        data[f"{prefix}_USER"] = user
        data[f"{prefix}_PASSWORD"] = generate_password()
    if pmm is not None:
        data["PMM_SERVER_USER"] = pmm.login
        data["PMM_SERVER_PASSWORD"] = pmm.password
    logger.debug("psmdb_secret_generated", keys=sorted(data))
    return data
