import os
import sys
import time
from argparse import ArgumentParser
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_VERBOSE_FLAGS = {"--verbose", "-v"}
_cli_verbose = any(arg in _VERBOSE_FLAGS for arg in sys.argv[1:])

# TensorFlow is only imported for --backend tensorflow; keep its C++ logging quiet unless asked.
if not _cli_verbose and os.environ.get("TF_CPP_MIN_LOG_LEVEL") is None:
    os.environ["TF_CPP_MIN_LOG_LEVEL"] = "3"

VERBOSE = _cli_verbose


def log(message, *args, **kwargs):
    if VERBOSE:
        print(message, *args, **kwargs)


import numpy as np

# Imports for visualization
import PIL.Image
import PIL.ImageDraw
import PIL.ImageFont
import imageio
from matplotlib import colormaps

from escapetime import ZOOM_IN, Evaluator, EvaluatorConfig, FrameResult, Viewport

FPS_COLOR = (245, 222, 179, 255)
INSIDE_COLOR = (0, 0, 0, 255)


@dataclass
class OutputConfig:
    modes: tuple[str, ...]
    gif_path: Path | None
    image_path: Path | None
    frame_dir: Path | None
    image_format: str


def build_parser():
    parser = ArgumentParser(description="Render escape-time frames of a zoom into the Mandelbrot set.")

    parser.add_argument('--x-start', type=float,
                        dest='x_start', help='left edge of the view in the complex plane',
                        metavar='X_START', default=-3.0)

    parser.add_argument('--x-stop', type=float,
                        dest='x_stop', help='right edge of the view in the complex plane',
                        metavar='X_STOP', default=2.0)

    parser.add_argument('--y-start', type=float,
                        dest='y_start', help='top edge of the view in the complex plane',
                        metavar='Y_START', default=-2.0)

    parser.add_argument('--y-stop', type=float,
                        dest='y_stop', help='bottom edge of the view in the complex plane',
                        metavar='Y_STOP', default=2.0)

    parser.add_argument('--pixels-per-unit', type=float,
                        dest='pixels_per_unit', help='screen pixels per unit of the complex plane',
                        metavar='PIXELS_PER_UNIT', default=200.0)

    parser.add_argument('--max-iterations', type=int,
                        dest='max_iterations', help='iteration cap before a point counts as inside the set',
                        metavar='MAX_ITERATIONS', default=100)

    parser.add_argument('--workers', type=int,
                        dest='workers', help='number of row bands evaluated concurrently',
                        metavar='WORKERS', default=64)

    parser.add_argument('--stride', type=int,
                        dest='stride', help='sample every STRIDE-th pixel on both axes and draw it as a STRIDE x STRIDE block',
                        metavar='STRIDE', default=1)

    parser.add_argument('--backend', choices=['numpy', 'tensorflow'], default='numpy',
                        help='kernel used by each band worker')

    parser.add_argument('--keep-overshoot', dest='keep_overshoot', action='store_true',
                        help='evaluate rows the last bands reach past the bottom edge (they are not drawn)')

    parser.add_argument('--frames', type=int,
                        dest='frames', help='number of frames to generate',
                        metavar='FRAMES', default=1)

    parser.add_argument('--zoom-factor', type=float,
                        dest='zoom_factor', help='zoom applied between frames. > 1 zooms in, < 1 zooms out',
                        metavar='ZOOM_FACTOR', default=ZOOM_IN)

    parser.add_argument('--focus-x', type=float, dest='focus_x', metavar='FOCUS_X', default=None,
                        help='screen column kept fixed while zooming (default: frame centre)')

    parser.add_argument('--focus-y', type=float, dest='focus_y', metavar='FOCUS_Y', default=None,
                        help='screen row kept fixed while zooming (default: frame centre)')

    parser.add_argument('--mode', dest='modes', action='append', metavar='MODE',
                        help='Output modes to generate. May be repeated. Choices: image, frames, gif.')

    parser.add_argument('--output', dest='output', type=str,
                        help='Destination for single-file outputs (gif/image) or container directory when both are requested.')

    parser.add_argument('--frame-dir', dest='frame_dir', type=str,
                        help='Directory in which to store the frame sequence.')

    parser.add_argument('--format', type=str,
                        dest='format', help='file format for image-based outputs. Can be any extension supported by Pillow. Default: "png".',
                        metavar='FORMAT', default='png')

    parser.add_argument('--colormap', type=str,
                        dest='colormap', help='matplotlib colormap for escaping points (default: grey ramp)',
                        metavar='COLORMAP', default=None)

    parser.add_argument('--ramp', choices=['linear', 'log'], default='linear',
                        help='How escape counts are scaled by the iteration cap before colouring.')

    parser.add_argument('--show-fps', dest='show_fps', action='store_true',
                        help='draw the frame rate of each evaluation in the top-left corner')

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging, including per-frame timings.')

    return parser


def resolve_output_config(opt, parser: ArgumentParser) -> OutputConfig:
    valid_modes = {"image", "frames", "gif"}
    modes: list[str] = []
    for mode in opt.modes or ["image"]:
        if mode not in valid_modes:
            parser.error(f"Unknown output mode '{mode}'. Valid choices: {', '.join(sorted(valid_modes))}.")
        if mode not in modes:
            modes.append(mode)
    modes_tuple = tuple(modes)

    image_format = (opt.format or "png").lower().lstrip(".") or "png"

    frame_dir: Path | None = None
    if "frames" in modes_tuple:
        frame_dir = Path(opt.frame_dir or "./frames").expanduser().resolve()
    elif opt.frame_dir is not None:
        parser.error("--frame-dir is only valid with the frames mode.")

    file_modes = [mode for mode in modes_tuple if mode in {"gif", "image"}]
    gif_path: Path | None = None
    image_path: Path | None = None

    if not file_modes:
        if opt.output:
            parser.error("--output is only valid when gif or image modes are requested.")
    elif len(file_modes) == 1:
        output_path = Path(opt.output).expanduser() if opt.output else None
        if output_path is not None and output_path.is_dir():
            parser.error("--output must point to a file, not a directory, when a single file mode is active.")
        if file_modes[0] == "gif":
            output_path = output_path or Path("zoom.gif")
            if output_path.suffix and output_path.suffix.lower() != ".gif":
                parser.error("GIF outputs must end with .gif.")
            gif_path = output_path.with_suffix(".gif").resolve()
        else:
            expected_suffix = f".{image_format}"
            output_path = output_path or Path(f"frame_final{expected_suffix}")
            if output_path.suffix and output_path.suffix.lower() != expected_suffix:
                parser.error(f"--output extension {output_path.suffix} does not match --format {image_format}.")
            image_path = output_path.with_suffix(expected_suffix).resolve()
    else:
        base_dir = Path(opt.output).expanduser() if opt.output else Path.cwd()
        if base_dir.exists() and not base_dir.is_dir():
            parser.error("--output must be a directory when both gif and image modes are active.")
        gif_path = (base_dir / "zoom.gif").resolve()
        image_path = (base_dir / f"frame_final.{image_format}").resolve()

    return OutputConfig(
        modes=modes_tuple,
        gif_path=gif_path,
        image_path=image_path,
        frame_dir=frame_dir,
        image_format=image_format,
    )


def shade(escapes: np.ndarray, iteration_cap: int, ramp: str = "linear") -> np.ndarray:
    """Map escape counts to intensities in ``[0, 1]``; points inside the set map to 0."""

    escapes = np.asarray(escapes, dtype=np.float64)
    inside = escapes < 1
    if ramp == "log":
        scale = np.log2(iteration_cap) if iteration_cap > 1 else 1.0
        values = np.log2(np.maximum(escapes, 1.0)) / scale
    else:
        values = escapes / float(iteration_cap)
    return np.where(inside, 0.0, np.clip(values, 0.0, 1.0))


def colorize(escapes: np.ndarray, iteration_cap: int, *, ramp: str = "linear", colormap: str | None = None) -> np.ndarray:
    """Return an ``(N, 4)`` uint8 RGBA colour per escape count."""

    escapes = np.asarray(escapes)
    values = shade(escapes, iteration_cap, ramp)
    if colormap is None:
        grey = np.uint8(values * 255)
        rgba = np.stack((grey, grey, grey, np.full_like(grey, 255)), axis=-1)
    else:
        rgba = np.uint8(np.clip(np.asarray(colormaps[colormap](values)) * 255, 0, 255))
        rgba[..., 3] = 255
    rgba[escapes < 1] = INSIDE_COLOR
    return rgba


def rasterize(frame: FrameResult, *, ramp: str = "linear", colormap: str | None = None) -> np.ndarray:
    """Paint every visible pixel result as a ``stride x stride`` block."""

    canvas = np.zeros((frame.height, frame.width, 4), dtype=np.uint8)
    canvas[..., 3] = 255
    pixels = frame.visible()
    if not pixels:
        return canvas

    xs, ys, escapes = (np.asarray(column, dtype=np.int64) for column in zip(*pixels))
    colors = colorize(escapes, frame.config.iteration_cap, ramp=ramp, colormap=colormap)
    stride = frame.config.stride
    for dy in range(stride):
        for dx in range(stride):
            rows = ys + dy
            cols = xs + dx
            inside = (rows < frame.height) & (cols < frame.width)
            canvas[rows[inside], cols[inside]] = colors[inside]
    return canvas


def draw_fps(image: PIL.Image.Image, fps: float) -> PIL.Image.Image:
    draw = PIL.ImageDraw.Draw(image, "RGBA")
    draw.text((3, 3), f"fps: {int(round(fps))}", font=PIL.ImageFont.load_default(), fill=FPS_COLOR)
    return image


def _pil_format_name(ext: str) -> str:
    upper = ext.upper()
    if upper == "JPG":
        return "JPEG"
    if upper == "TIF":
        return "TIFF"
    return upper


def write_single_image(image: PIL.Image.Image, output_path: Path, image_format: str) -> None:
    """Write a single image to ``output_path`` using the provided format."""

    pil_format = _pil_format_name(image_format)
    if pil_format == "JPEG":
        image = image.convert("RGB")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image.save(str(output_path), format=pil_format)


def write_frame_sequence(image: PIL.Image.Image, frame_dir: Path, index: int, digits: int, image_format: str) -> Path:
    """Persist a frame in a numbered sequence inside ``frame_dir``."""

    frame_path = frame_dir / f"frame{index:0{digits}d}.{image_format}"
    write_single_image(image, frame_path, image_format)
    return frame_path


@dataclass
class OutputWriters:
    config: OutputConfig
    frame_digits: int

    def __post_init__(self) -> None:
        self._gif_writer: Any = None
        if self.config.gif_path is not None:
            self.config.gif_path.parent.mkdir(parents=True, exist_ok=True)
            self._gif_writer = imageio.get_writer(str(self.config.gif_path), mode='I', duration=0.1, loop=0)

    def write_frame(self, index: int, image: PIL.Image.Image) -> None:
        if self._gif_writer is not None:
            self._gif_writer.append_data(np.asarray(image))
        if self.config.frame_dir is not None:
            write_frame_sequence(image, self.config.frame_dir, index, self.frame_digits, self.config.image_format)

    def finalize(self, final_image: PIL.Image.Image | None) -> None:
        if final_image is not None and self.config.image_path is not None:
            write_single_image(final_image, self.config.image_path, self.config.image_format)

    def close(self) -> None:
        if self._gif_writer is not None:
            self._gif_writer.close()
            self._gif_writer = None


def main(argv=None):
    parser = build_parser()
    opt = parser.parse_args(argv)

    global VERBOSE
    VERBOSE = bool(opt.verbose)

    output_config = resolve_output_config(opt, parser)

    try:
        viewport = Viewport(opt.x_start, opt.x_stop, opt.y_start, opt.y_stop, opt.pixels_per_unit)
        config = EvaluatorConfig(
            worker_count=opt.workers,
            stride=opt.stride,
            iteration_cap=opt.max_iterations,
            backend=opt.backend,
            clip_overshoot=not opt.keep_overshoot,
        )
    except ValueError as exc:
        parser.error(str(exc))

    if opt.zoom_factor <= 0:
        parser.error("--zoom-factor must be positive.")
    if opt.colormap is not None and opt.colormap not in colormaps:
        parser.error(f"Unknown colormap '{opt.colormap}'.")

    width, height = viewport.derive_resolution()
    focus = (
        opt.focus_x if opt.focus_x is not None else width / 2.0,
        opt.focus_y if opt.focus_y is not None else height / 2.0,
    )
    log("Screen %dx%d, %d workers, stride %d, cap %d, %s backend"
        % (width, height, config.worker_count, config.stride, config.iteration_cap, config.backend))

    # Plan every frame's viewport before writing anything, so a zoom past float range fails up front.
    viewports = [viewport]
    for i in range(1, opt.frames):
        try:
            viewports.append(viewports[-1].zoom(opt.zoom_factor, focus))
        except ValueError as exc:
            parser.error(f"frame {i}: {exc}")

    writers = OutputWriters(output_config, frame_digits=max(3, len(str(max(opt.frames - 1, 0)))))
    final_image: PIL.Image.Image | None = None

    try:
        with Evaluator(config) as evaluator:
            for i, viewport in enumerate(viewports[:opt.frames]):
                print("frame {0} out of {1}".format(i, opt.frames), end='\r')
                started = time.perf_counter()
                frame = evaluator.evaluate(viewport)
                elapsed = time.perf_counter() - started
                fps = 1.0 / elapsed if elapsed > 0 else float("inf")
                log("frame %d: %d pixels in %.3fs (%.1f fps), x=[%.6g, %.6g] y=[%.6g, %.6g]"
                    % (i, len(frame), elapsed, fps, viewport.x_start, viewport.x_stop, viewport.y_start, viewport.y_stop))

                image = PIL.Image.fromarray(rasterize(frame, ramp=opt.ramp, colormap=opt.colormap))
                if opt.show_fps:
                    image = draw_fps(image, fps)
                writers.write_frame(i, image)
                final_image = image
    finally:
        writers.close()

    writers.finalize(final_image)


if __name__ == '__main__':
    main()
