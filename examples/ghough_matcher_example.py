#!/usr/bin/env python3
"""Live Generalized Hough matcher example: find a template shape in webcam frames.

Templates come from image files (each optionally with its own prescale,
``panda_face.png:3.5``) or are cut from the center of the live frame.

Keys:
    t       re-capture template from the frame center
    n       next template file
    + / -   voting step up / down
    b       toggle bounded voting
    [ / ]   pre-blur kernel down / up
    k       cycle Sobel aperture (3, 5, 7)
    e       toggle CLAHE equalization
    c       cycle input channel (gray, B, G, R)
    o       cycle view (camera, votes, gradients, preprocessed)
    q, ESC  quit

Requirements: opencv-python, a webcam
"""

import argparse
import time

import cv2
import numpy as np

from cghmatch import GradientMatcher
from cghmatch._constants import DEFAULT_ANGSTEP, DEFAULT_KBLUR, DEFAULT_KSOBEL, DEFAULT_MAGTHR
from cghmatch.encoder import preprocess, to_gray
from cghmatch.locator import normalize_votes
from _common import (
    NO_KEY, Camera, add_common_args, crop_center, draw_label, draw_match,
    paste_thumbnail,
)

VIEWS = ("camera", "votes", "gradients", "preprocessed")
CHANNELS = (None, 0, 1, 2)
CHANNEL_NAMES = {None: "gray", 0: "B", 1: "G", 2: "R"}
SOBEL_SIZES = (3, 5, 7)
MAX_BLUR = 15
# Normalized vote level outlined in the gradients view
STRONG_MATCH = 0.8


def parse_args():
    parser = argparse.ArgumentParser(
        description="Generalized Hough shape matching on a webcam stream")
    add_common_args(parser)
    parser.add_argument("--template", type=str, nargs="*", default=[],
                        metavar="FILE[:SCALE]",
                        help="Template image file(s), each with an optional prescale")
    parser.add_argument("--crop", type=int, default=64,
                        help="Side of the center crop used by 't' (default: 64)")
    parser.add_argument("--blur", type=int, default=DEFAULT_KBLUR,
                        help=f"Pre-blur kernel (default: {DEFAULT_KBLUR})")
    parser.add_argument("--sobel", type=int, default=DEFAULT_KSOBEL,
                        choices=SOBEL_SIZES,
                        help=f"Sobel aperture (default: {DEFAULT_KSOBEL})")
    parser.add_argument("--magthr", type=float, default=DEFAULT_MAGTHR,
                        help=f"Gradient magnitude threshold (default: {DEFAULT_MAGTHR})")
    parser.add_argument("--angstep", type=float, default=DEFAULT_ANGSTEP,
                        help=f"Orientation steps per turn (default: {DEFAULT_ANGSTEP:g})")
    parser.add_argument("--clahe", type=float, default=2.0,
                        help="CLAHE clip limit used when 'e' enables it (default: 2.0)")
    parser.add_argument("--step", type=int, default=1,
                        help="Initial voting step (default: 1)")
    return parser.parse_args()


def parse_template_arg(arg):
    """Split ``path[:scale]`` into the path and its prescale."""
    path, sep, scale = arg.rpartition(":")
    if sep and path:
        try:
            return path, float(scale)
        except ValueError:
            pass
    return arg, 1.0


class MatcherState:
    """Knob settings of the example and the template they were applied to."""

    def __init__(self, args):
        self.kblur = args.blur
        self.ksobel = args.sobel
        self.magthr = args.magthr
        self.angstep = args.angstep
        self.clahe_clip = args.clahe
        self.clahe_on = False
        self.channel = None
        self.view = 0
        self.template = None
        self.template_files = [parse_template_arg(t) for t in args.template]
        self.file_index = 0

    def apply_encoder(self, matcher):
        """Push encoder knobs to the matcher and rebuild from the current template."""
        matcher.init(kblur=self.kblur, ksobel=self.ksobel, magthr=self.magthr,
                     angstep=self.angstep,
                     clahe_clip=self.clahe_clip if self.clahe_on else None)
        if self.template is not None:
            matcher.set_template(self.template)
            print(f"\nTemplate rebuilt: ideal votes={matcher.max_votes} "
                  f"(blur={self.kblur}, sobel={self.ksobel}, "
                  f"clahe={'on' if self.clahe_on else 'off'})")

    def load_file(self, matcher):
        path, prescale = self.template_files[self.file_index]
        self.template = matcher.load_template(path, prescale=prescale)
        print(f"\nLoaded template {path} x{prescale:g}: "
              f"ideal votes={matcher.max_votes}")

    def capture(self, matcher, gray, side):
        self.template = crop_center(gray, side, side)
        matcher.set_template(self.template)
        print(f"\nTemplate captured from center: ideal votes={matcher.max_votes}")


def render_view(view, frame, gray, encoded, acc, state):
    """Build the BGR image for the selected view."""
    if view == "votes":
        return cv2.cvtColor(normalize_votes(acc), cv2.COLOR_GRAY2BGR)
    if view == "gradients":
        codes = cv2.normalize(encoded, None, 0, 255, cv2.NORM_MINMAX)
        img = cv2.cvtColor(codes.astype(np.uint8), cv2.COLOR_GRAY2BGR)
        strong = (normalize_votes(acc) > STRONG_MATCH * 255).astype(np.uint8)
        contours, _ = cv2.findContours(strong, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
        cv2.drawContours(img, contours, -1, (0, 0, 255), -1)
        return img
    if view == "preprocessed":
        clip = state.clahe_clip if state.clahe_on else None
        return cv2.cvtColor(preprocess(gray, state.kblur, clip), cv2.COLOR_GRAY2BGR)
    return frame


def handle_key(key, matcher, state, gray, args):
    if key == ord("t"):
        state.capture(matcher, gray, args.crop)
    elif key == ord("n") and state.template_files:
        state.file_index = (state.file_index + 1) % len(state.template_files)
        state.load_file(matcher)
    elif key in (ord("+"), ord("=")):
        matcher.set_vote_params(loop_step=matcher.vote_params.loop_step + 1)
    elif key == ord("-") and matcher.vote_params.loop_step > 1:
        matcher.set_vote_params(loop_step=matcher.vote_params.loop_step - 1)
    elif key == ord("b"):
        matcher.set_vote_params(bounded=not matcher.vote_params.bounded)
    elif key in (ord("["), ord("]")):
        delta = 2 if key == ord("]") else -2
        state.kblur = int(np.clip(max(state.kblur, 1) + delta, 1, MAX_BLUR))
        state.apply_encoder(matcher)
    elif key == ord("k"):
        idx = SOBEL_SIZES.index(state.ksobel) if state.ksobel in SOBEL_SIZES else -1
        state.ksobel = SOBEL_SIZES[(idx + 1) % len(SOBEL_SIZES)]
        state.apply_encoder(matcher)
    elif key == ord("e"):
        state.clahe_on = not state.clahe_on
        state.apply_encoder(matcher)
    elif key == ord("c"):
        state.channel = CHANNELS[(CHANNELS.index(state.channel) + 1) % len(CHANNELS)]
    elif key == ord("o"):
        state.view = (state.view + 1) % len(VIEWS)


def main():
    args = parse_args()
    state = MatcherState(args)
    matcher = GradientMatcher()
    state.apply_encoder(matcher)
    matcher.set_vote_params(loop_step=args.step)

    if state.template_files:
        state.load_file(matcher)

    with Camera(args) as cam:
        for frame in cam.frames():
            gray = to_gray(frame, state.channel)
            if not matcher.has_template:
                state.capture(matcher, gray, args.crop)

            t0 = time.perf_counter()
            encoded, acc, result = matcher.process(gray)
            latency_ms = (time.perf_counter() - t0) * 1000

            view = VIEWS[state.view]
            out = render_view(view, frame, gray, encoded, acc, state)
            if out is frame:
                out = frame.copy()
            draw_match(out, result.point, matcher.footprint_size, result.confidence)
            paste_thumbnail(out, state.template)

            params = matcher.vote_params
            draw_label(out, f"{view} | {CHANNEL_NAMES[state.channel]} | step {params.loop_step}"
                            f"{' bounded' if params.bounded else ''}", (10, 20))
            draw_label(out, f"{latency_ms:.1f} ms", (10, 45))

            key = cam.show(out)
            if key not in (-1, NO_KEY):
                handle_key(key, matcher, state, gray, args)

            cam.status({"x": result.point[0], "y": result.point[1],
                        "conf": result.confidence}, latency_ms)


if __name__ == "__main__":
    main()
