"""
Version service client.

The version service publishes, per product release, a matrix of compatible
component versions:

    GET {url}/{product}/{version}
    {"versions": [{"product": ..., "operator": ..., "matrix": {
        "<component>": {"<version>": {"imagePath", "imageHash", "status", "critical"}}}}]}

Versions are compared as (major, minor, patch) tuples, never as strings, so
"1.10.0" sorts after "1.2.0".
"""
from typing import Dict, List, Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import VersionResolutionError
from dbaas_controller.models.cluster import OperatorVersions
from dbaas_controller.utils.version import Version, parse_version

logger = get_logger(__name__)

PMM_SERVER_PRODUCT = "pmm-server"
PXC_OPERATOR_COMPONENT = "pxcOperator"
PSMDB_OPERATOR_COMPONENT = "psmdbOperator"
STATUS_RECOMMENDED = "recommended"


class ComponentVersion(BaseModel):
    """One candidate version of a component."""

    model_config = ConfigDict(populate_by_name=True)

    image_path: str = Field(default="", alias="imagePath")
    image_hash: str = Field(default="", alias="imageHash")
    status: str = ""
    critical: bool = False


class VersionMatrixEntry(BaseModel):
    """Compatibility matrix of one product release."""

    model_config = ConfigDict(populate_by_name=True)

    product: str = ""
    product_version: str = Field(default="", alias="operator")
    matrix: Dict[str, Dict[str, ComponentVersion]] = Field(default_factory=dict)


class VersionServiceResponse(BaseModel):
    versions: List[VersionMatrixEntry] = Field(default_factory=list)


def _parse(version: str) -> Version:
    try:
        return parse_version(version)
    except ValueError as e:
        raise VersionResolutionError(str(e), details={"version": version})


def latest(version_map: Mapping[str, object]) -> str:
    """
    Greatest version among the keys of ``version_map``.

    Raises:
        VersionResolutionError: If the map is empty or a key is not a version
    """
    if not version_map:
        raise VersionResolutionError("no versions to compare current version with found")

    latest_key, latest_version = "0.0.0", (0, 0, 0)
    for key in version_map:
        candidate = _parse(key)
        if candidate > latest_version:
            latest_key, latest_version = key, candidate
    return latest_key


class VersionServiceClient:
    """
    Async client of the version service.

    Transport failures are retried with exponential backoff; HTTP error
    statuses and malformed bodies fail immediately.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        attempts: Optional[int] = None,
    ):
        self.url = (url or settings.version_service_url).rstrip("/")
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.version_service_timeout),
        )
        self.attempts = attempts or settings.version_service_attempts

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "VersionServiceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def matrix(self, product: str, version: Optional[str] = None) -> VersionServiceResponse:
        """
        Fetch the matrix of a product, optionally narrowed to one release.

        Raises:
            VersionResolutionError: If the service cannot be reached or answers garbage
        """
        url = f"{self.url}/{product}"
        if version:
            url = f"{url}/{version}"

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    logger.debug("version_matrix_fetching", url=url, attempt=attempt.retry_state.attempt_number)
                    response = await self.client.get(url)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("version_matrix_http_error", url=url, status_code=e.response.status_code)
            raise VersionResolutionError(
                f"version service returned {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            logger.error("version_matrix_unreachable", url=url, error=str(e))
            raise VersionResolutionError("version service is unreachable", details={"url": url, "error": str(e)})

        try:
            return VersionServiceResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error("version_matrix_malformed", url=url, error=str(e))
            raise VersionResolutionError("version service returned a malformed matrix", details={"url": url})

    async def latest_operator_versions(self, pmm_version: str) -> Optional[OperatorVersions]:
        """
        Newest PXC and PSMDB operator versions compatible with a PMM release.

        Returns None when the service has no entry, or more than one entry,
        for that release; the caller must not guess in that case.
        """
        if not pmm_version:
            raise VersionResolutionError("given PMM version is empty")

        response = await self.matrix(PMM_SERVER_PRODUCT, pmm_version)
        if len(response.versions) != 1:
            logger.info(
                "operator_versions_unresolved",
                pmm_version=pmm_version,
                entries=len(response.versions),
            )
            return None

        entry = response.versions[0]
        return OperatorVersions(
            pxc=latest(entry.matrix.get(PXC_OPERATOR_COMPONENT, {})),
            psmdb=latest(entry.matrix.get(PSMDB_OPERATOR_COMPONENT, {})),
        )

    async def latest_product_version(self, product: str) -> str:
        """Greatest release of a product known to the service."""
        response = await self.matrix(product)
        return latest({entry.product_version: entry for entry in response.versions})

    async def recommended_image(self, product: str, version: str, component: str) -> str:
        """
        Image of the newest recommended version of a component.

        Raises:
            VersionResolutionError: If the release is unknown or nothing is recommended
        """
        response = await self.matrix(product, version)
        if len(response.versions) != 1:
            raise VersionResolutionError(
                f"expected one matrix entry for {product} {version}, got {len(response.versions)}",
                details={"product": product, "version": version},
            )

        candidates = {
            key: value
            for key, value in response.versions[0].matrix.get(component, {}).items()
            if value.status == STATUS_RECOMMENDED
        }
        if not candidates:
            raise VersionResolutionError(
                f"no recommended {component} version for {product} {version}",
                details={"product": product, "version": version, "component": component},
            )
        return candidates[latest(candidates)].image_path
