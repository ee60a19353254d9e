"""
Custom resource document builder.

``build`` maps (engine, operator version, parameters, optional existing CR) to
a complete CR document. It is a pure function: no clock, no randomness and no
I/O, so the same inputs always render to the same bytes and re-applying the
result is idempotent.

A document is assembled in layers, each merged over the previous one:

    create:  generation defaults -> CR template (optional) -> parameters
    update:  existing CR -> parameters

Only parameters the caller explicitly set reach the document; everything
else keeps its default, template or existing value. Schema generations are
looked up in GENERATIONS by operator version, so supporting a new operator
shape means adding one table entry.
"""
import copy
from types import ModuleType
from typing import Any, Dict, List, Optional, Union

from dbaas_controller.config.logging import get_logger
from dbaas_controller.exceptions import BuildValidationError, ValidationError
from dbaas_controller.models.cluster import Engine
from dbaas_controller.models.params import ComputeResources, PSMDBParams, PXCParams
from dbaas_controller.services import psmdb_spec, pxc_spec
from dbaas_controller.services.cr_common import BuildOptions, Generation
from dbaas_controller.utils.documents import Replace, deep_merge, get_path, prune, render
from dbaas_controller.utils.quantity import str_to_bytes, str_to_milli_cpu
from dbaas_controller.utils.version import format_version, parse_version, split_image

logger = get_logger(__name__)

Params = Union[PXCParams, PSMDBParams]

GENERATIONS: List[Generation] = [
    Generation(Engine.PXC, "pxc-legacy", (1, 0, 0), (1, 11, 0), pxc_spec.skeleton_legacy, pxc_spec.patch_legacy),
    Generation(Engine.PXC, "pxc-1.11", (1, 11, 0), None, pxc_spec.skeleton_111, pxc_spec.patch_111),
    Generation(Engine.PSMDB, "psmdb-legacy", (1, 0, 0), (1, 12, 0), psmdb_spec.skeleton_legacy, psmdb_spec.patch_legacy),
    Generation(Engine.PSMDB, "psmdb-1.12", (1, 12, 0), None, psmdb_spec.skeleton_112, psmdb_spec.patch_112),
]

_ENGINE_SPECS: Dict[Engine, ModuleType] = {
    Engine.PXC: pxc_spec,
    Engine.PSMDB: psmdb_spec,
}

__all__ = [
    "BuildOptions",
    "GENERATIONS",
    "build",
    "render",
    "select_generation",
    "secret_name",
    "validate_image",
]


def select_generation(engine: Engine, schema_version: str) -> Generation:
    """
    Find the schema generation serving an operator version.

    Raises:
        BuildValidationError: If the version is unparsable or no generation covers it
    """
    try:
        version = parse_version(schema_version)
    except ValueError:
        raise BuildValidationError(
            f"Unrecognized schema generation '{schema_version}'",
            details={"engine": engine.value, "schema_version": schema_version},
        )

    for generation in GENERATIONS:
        if generation.engine == engine and generation.covers(version):
            return generation

    raise BuildValidationError(
        f"No {engine.value} schema generation supports operator version {format_version(version)}",
        details={"engine": engine.value, "schema_version": schema_version},
    )


def validate_image(current: Optional[str], new: str) -> None:
    """
    Only the tag of a running image may change.

    Raises:
        BuildValidationError: If the new image has no tag, names another
            repository, or carries the tag already in use
    """
    new_repo, new_tag = split_image(new)
    if not new_tag:
        raise BuildValidationError("image has to have version tag", details={"image": new})

    current_repo, current_tag = split_image(current or "")
    if current_repo != new_repo:
        raise BuildValidationError(
            f"expected image is '{current_repo}', '{new_repo}' was given",
            details={"current": current, "image": new},
        )
    if current_tag == new_tag:
        raise BuildValidationError(
            f"failed to change image: the database version '{new_tag}' is already in use",
            details={"image": new},
        )


def _check_compute(compute: Optional[ComputeResources]) -> None:
    if compute is None:
        return
    if compute.cpu_m:
        str_to_milli_cpu(compute.cpu_m)
    if compute.memory_bytes:
        str_to_bytes(compute.memory_bytes)


def _check_disk(disk_size: Optional[str]) -> None:
    if disk_size:
        str_to_bytes(disk_size)


def _check_params(params: Params, creating: bool) -> None:
    if creating and not params.size:
        raise BuildValidationError("cluster size must be at least 1", details={"size": params.size})
    if params.size is not None and params.size < 1:
        raise BuildValidationError("cluster size must be at least 1", details={"size": params.size})

    try:
        if isinstance(params, PXCParams):
            for role in (params.pxc, params.proxysql, params.haproxy):
                if role is not None:
                    _check_compute(role.compute_resources)
            if params.pxc is not None:
                _check_disk(params.pxc.disk_size)
            if params.proxysql is not None:
                _check_disk(params.proxysql.disk_size)
        elif params.replicaset is not None:
            _check_compute(params.replicaset.compute_resources)
            _check_disk(params.replicaset.disk_size)
        for storage in (params.storages or {}).values():
            _check_disk(storage.disk_size)
    except ValidationError as e:
        raise BuildValidationError(e.message, details=e.details)


def _template_layer(template: Dict[str, Any]) -> Dict[str, Any]:
    """
    Template lists under ``spec.backup`` replace the default schedules
    instead of being merged by name with them.
    """
    layer = copy.deepcopy(template)
    backup = get_path(layer, "spec", "backup")
    if isinstance(backup, dict):
        for key, value in backup.items():
            if isinstance(value, list):
                backup[key] = Replace(value)
    return layer


def _engine_of(params: Params) -> Engine:
    return Engine.PXC if isinstance(params, PXCParams) else Engine.PSMDB


def build(
    engine: Engine,
    schema_version: str,
    params: Params,
    existing: Optional[Dict[str, Any]] = None,
    options: Optional[BuildOptions] = None,
) -> Dict[str, Any]:
    """
    Build the CR document of a cluster.

    Args:
        engine: Engine the document is for; must match the parameter type
        schema_version: Installed operator version, e.g. "1.12.0"
        params: Caller parameters; unset fields stay absent
        existing: Current CR when updating in place
        options: Environment-derived inputs (cluster type, images, template)

    Returns:
        The complete CR document

    Raises:
        BuildValidationError: For malformed or inconsistent parameters, an
            unknown schema generation or a forbidden image change
    """
    options = options or BuildOptions()
    if _engine_of(params) != engine:
        raise BuildValidationError(
            f"{type(params).__name__} cannot describe a {engine.value} cluster",
            details={"engine": engine.value},
        )

    creating = existing is None
    _check_params(params, creating)
    generation = select_generation(engine, schema_version)
    engine_spec = _ENGINE_SPECS[engine]

    if creating:
        document = deep_merge({}, generation.skeleton(params, schema_version, options))
        if options.template:
            document = deep_merge(document, _template_layer(options.template))
        before_image = None
    else:
        document = copy.deepcopy(existing)
        before_image = get_path(document, *engine_spec.IMAGE_PATH)

    overlay = generation.patch(params, document, schema_version, options)
    document = prune(deep_merge(document, overlay))

    after_image = get_path(document, *engine_spec.IMAGE_PATH)
    if not creating and after_image != before_image:
        validate_image(before_image, after_image)

    engine_spec.validate(document)

    logger.debug(
        "cr_document_built",
        engine=engine.value,
        cluster=params.name,
        generation=generation.name,
        update=not creating,
    )
    return document


def secret_name(engine: Engine, document: Dict[str, Any]) -> Optional[str]:
    """Name of the users secret a document refers to."""
    return _ENGINE_SPECS[engine].secret_name(document)
