"""
Off-screen Mermaid rendering.

The renderer is a narrow capability: source text in, node geometry out.
The importer only needs each rendered node's element id (to recover the
Mermaid node id), its label text, its bounding box and its translation,
so tests can substitute a fixed layout without a real renderer.

``MermaidCliRenderer`` runs mermaid-cli (``mmdc``) in a scratch directory
and reads node geometry back from the produced SVG.
"""

import asyncio
import contextlib
import math
import re
import shutil
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Protocol

from ..config import get_settings
from ..exceptions import RenderError, RendererUnavailableError
from ..log import get_logger

logger = get_logger(__name__)

_TRANSLATE_RE = re.compile(r"translate\s*\(\s*([-\d.eE]+)\s*,?\s*([-\d.eE]+)?\s*\)")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


@dataclass(frozen=True)
class BoundingBox:
    """Box in the node group's local coordinates."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class RenderedNode:
    """Geometry of one rendered node group."""
    element_id: str
    class_name: str
    label: str
    bbox: BoundingBox
    transform: tuple[float, float] = (0.0, 0.0)

    @property
    def position(self) -> tuple[float, float]:
        """Top-left corner in diagram coordinates."""
        return (self.transform[0] + self.bbox.x, self.transform[1] + self.bbox.y)


class MermaidRenderer(Protocol):
    """Anything that can lay out Mermaid source and report node geometry."""

    async def render(self, source: str) -> list[RenderedNode]:
        """
        Render ``source`` and return its node groups.

        Raises:
            RenderError: If the source is invalid or rendering fails
        """
        ...


def parse_translate(transform: Optional[str]) -> tuple[float, float]:
    """Extract the translation from an SVG ``transform`` attribute."""
    if not transform:
        return (0.0, 0.0)
    match = _TRANSLATE_RE.search(transform)
    if not match:
        return (0.0, 0.0)
    x = float(match.group(1))
    y = float(match.group(2)) if match.group(2) else 0.0
    return (x, y)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _float(value: Optional[str], default: float = 0.0) -> float:
    try:
        result = float(value) if value is not None else default
    except ValueError:
        return default
    return result if math.isfinite(result) else default


def _points_box(points: str) -> Optional[BoundingBox]:
    numbers = [float(n) for n in _NUMBER_RE.findall(points)]
    xs, ys = numbers[0::2], numbers[1::2]
    if not xs or not ys:
        return None
    return BoundingBox(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def shape_bbox(group: ET.Element) -> BoundingBox:
    """
    Approximate the bounding box of a node group from its first shape.

    Mermaid draws each node as one rect, circle, ellipse, polygon or path
    centred on the group origin. Paths are not measured.
    """
    for element in group.iter():
        name = _local_name(element.tag)
        if name == "rect":
            return BoundingBox(
                _float(element.get("x")),
                _float(element.get("y")),
                _float(element.get("width")),
                _float(element.get("height")),
            )
        if name == "circle":
            r = _float(element.get("r"))
            cx, cy = _float(element.get("cx")), _float(element.get("cy"))
            return BoundingBox(cx - r, cy - r, 2 * r, 2 * r)
        if name == "ellipse":
            rx, ry = _float(element.get("rx")), _float(element.get("ry"))
            cx, cy = _float(element.get("cx")), _float(element.get("cy"))
            return BoundingBox(cx - rx, cy - ry, 2 * rx, 2 * ry)
        if name == "polygon" and element.get("points"):
            box = _points_box(element.get("points"))
            if box:
                # Polygons are translated separately from their group
                dx, dy = parse_translate(element.get("transform"))
                return BoundingBox(box.x + dx, box.y + dy, box.width, box.height)
    return BoundingBox(0.0, 0.0, 0.0, 0.0)


def _walk_groups(element: ET.Element, offset: tuple[float, float]) -> Iterator[tuple[ET.Element, tuple[float, float]]]:
    for child in element:
        if _local_name(child.tag) != "g":
            continue
        dx, dy = parse_translate(child.get("transform"))
        total = (offset[0] + dx, offset[1] + dy)
        classes = (child.get("class") or "").split()
        if "node" in classes:
            yield child, total
        else:
            yield from _walk_groups(child, total)


def extract_rendered_nodes(svg: str) -> list[RenderedNode]:
    """
    Read node groups (``<g class="node ...">``) out of rendered SVG markup.

    The translation of each node includes every enclosing group's
    translation, so nodes inside clusters land in diagram coordinates.

    Raises:
        RenderError: If the markup is not well-formed SVG
    """
    try:
        root = ET.fromstring(svg)
    except ET.ParseError as e:
        raise RenderError(f"Renderer produced invalid SVG: {e}") from e

    nodes = []
    for group, translate in _walk_groups(root, (0.0, 0.0)):
        label = " ".join(" ".join(group.itertext()).split())
        nodes.append(RenderedNode(
            element_id=group.get("id") or "",
            class_name=group.get("class") or "",
            label=label,
            bbox=shape_bbox(group),
            transform=translate,
        ))
    return nodes


class MermaidCliRenderer:
    """Renders Mermaid source with the mermaid-cli ``mmdc`` executable."""

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.executable = executable or settings.mermaid_cli_path
        self.timeout = timeout if timeout is not None else settings.mermaid_render_timeout

    def _resolve(self) -> str:
        path = shutil.which(self.executable)
        if not path:
            raise RendererUnavailableError(
                f"'{self.executable}' was not found on PATH. "
                "Install Mermaid CLI: npm install -g @mermaid-js/mermaid-cli"
            )
        return path

    async def render(self, source: str) -> list[RenderedNode]:
        mmdc = self._resolve()

        # The scratch directory is removed on every exit path
        with tempfile.TemporaryDirectory(prefix="diagmo-mmdc-") as tmp_dir:
            workdir = Path(tmp_dir)
            input_path = workdir / "input.mmd"
            output_path = workdir / "output.svg"
            input_path.write_text(source, encoding="utf-8")

            try:
                process = await asyncio.create_subprocess_exec(
                    mmdc, "-i", str(input_path), "-o", str(output_path),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise RenderError(f"Could not start {mmdc}: {e}") from e

            # The child must be gone before the scratch directory is removed,
            # including when the caller cancels us
            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise RenderError(f"Mermaid render timed out after {self.timeout:g}s") from e
            finally:
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()

            if process.returncode != 0:
                detail = (stderr or stdout or b"").decode("utf-8", errors="replace").strip()
                raise RenderError(detail or f"mmdc exited with code {process.returncode}")

            if not output_path.exists():
                raise RenderError("Render completed but no SVG was produced")

            svg = output_path.read_text(encoding="utf-8")

        nodes = extract_rendered_nodes(svg)
        logger.debug("Rendered %d Mermaid node groups", len(nodes))
        return nodes
