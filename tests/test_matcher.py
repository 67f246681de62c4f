"""Tests for the GradientMatcher facade: templating, matching and runtime swaps.

Usage:
    pytest tests/test_matcher.py -v
"""

import itertools
import threading

import cv2
import numpy as np
import pytest

from cghmatch import GradientMatcher, MatchResult
from cghmatch.encoder import EncoderParams
from cghmatch.voting import VoteParams


def _stroke_codes():
    img = np.zeros((10, 10), dtype=np.uint8)
    for k in (3, 4, 5):
        img[k, k] = 5
    return img


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

class TestSelfMatch:

    def test_template_against_itself(self, shape_template):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        result = matcher.match(shape_template)
        assert result.point == (30, 30)
        assert result.confidence == pytest.approx(1.0)
        assert result.votes == matcher.max_votes

    def test_ideal_is_positive(self, shape_template):
        matcher = GradientMatcher()
        table = matcher.set_template(shape_template)
        assert matcher.max_votes == table.ideal_vote_total > 0
        assert matcher.footprint_size == (60, 60)

    @pytest.mark.parametrize("top, left", [(10, 20), (50, 100), (95, 130), (0, 0)])
    def test_translated_template_found(self, shape_template, make_scene, top, left):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        result = matcher.match(make_scene(shape_template, top, left))
        assert result.point == (left + 30, top + 30)
        assert result.confidence == pytest.approx(1.0)

    def test_bounded_same_result_away_from_border(self, shape_template, make_scene):
        scene = make_scene(shape_template, 50, 100)
        matcher = GradientMatcher(vote_params=VoteParams(bounded=True))
        matcher.set_template(shape_template)
        result = matcher.match(scene)
        assert result.point == (130, 80)
        assert result.confidence == pytest.approx(1.0)

    def test_step_two_compensated(self, shape_template, make_scene):
        scene = make_scene(shape_template, 40, 60)
        matcher = GradientMatcher(vote_params=VoteParams(loop_step=2))
        matcher.set_template(shape_template)
        result = matcher.match(scene)
        assert result.point == (90, 70)
        assert 0.6 < result.confidence < 1.4

    def test_empty_scene_scores_zero(self, shape_template):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        result = matcher.match(np.zeros((100, 120), dtype=np.uint8))
        assert result.votes == 0
        assert result.confidence == 0.0

    def test_process_returns_all_stages(self, shape_template, make_scene):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        scene = make_scene(shape_template, 20, 30)
        encoded, acc, result = matcher.process(scene)
        assert encoded.shape == acc.shape == scene.shape
        assert encoded.dtype == np.uint8
        assert isinstance(result, MatchResult)
        assert acc[result.point[1], result.point[0]] == result.votes

        encoded2, acc2 = matcher.apply(scene)
        np.testing.assert_array_equal(encoded, encoded2)
        np.testing.assert_array_equal(acc, acc2)

    def test_vote_encoded(self, shape_template):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        encoded = matcher.encode(shape_template)
        acc = matcher.vote_encoded(encoded)
        assert acc[30, 30] == matcher.max_votes

    def test_color_frame(self, shape_template, make_scene):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        scene = cv2.cvtColor(make_scene(shape_template, 30, 40), cv2.COLOR_GRAY2BGR)
        assert matcher.match(scene).point == (70, 60)


class TestIdealModes:

    def test_border_pixel_excluded_from_self_match(self):
        """The template's own outer border is never visited while voting."""
        codes = _stroke_codes()
        codes[0, 0] = 2
        self_match = GradientMatcher(ideal="self_match").rebuild(codes)
        count = GradientMatcher(ideal="count").rebuild(codes)
        assert self_match.ideal_vote_total == 3
        assert count.ideal_vote_total == 4

    def test_modes_agree_on_interior_template(self):
        assert GradientMatcher(ideal="self_match").rebuild(_stroke_codes()).ideal_vote_total == 3
        assert GradientMatcher(ideal="count").rebuild(_stroke_codes()).ideal_vote_total == 3

    def test_self_match_ignores_vote_settings(self):
        """Step and bounded mode apply to scenes, not to the ideal."""
        codes = _stroke_codes()
        matcher = GradientMatcher(vote_params=VoteParams(loop_step=3, bounded=True))
        assert matcher.rebuild(codes).ideal_vote_total == 3

    def test_rebuild_uses_encoder_code_range(self):
        matcher = GradientMatcher(encoder=EncoderParams(angstep=16))
        table = matcher.rebuild(_stroke_codes())
        assert table.max_code == 17

    def test_rejects_unknown_mode(self):
        with pytest.raises(ValueError, match="ideal"):
            GradientMatcher(ideal="peak")

    def test_rejects_unknown_strategy(self):
        with pytest.raises(ValueError, match="strategy"):
            GradientMatcher(strategy="tree")

    def test_list_strategy_same_match(self, shape_template, make_scene):
        scene = make_scene(shape_template, 30, 70)
        weighted = GradientMatcher()
        listed = GradientMatcher(strategy="list")
        weighted.set_template(shape_template)
        listed.set_template(shape_template)
        assert weighted.match(scene) == listed.match(scene)


# ---------------------------------------------------------------------------
# Template lifecycle
# ---------------------------------------------------------------------------

class TestTemplateLifecycle:

    def test_no_template(self):
        matcher = GradientMatcher()
        assert not matcher.has_template
        assert matcher.table is None
        assert matcher.max_votes == 0
        assert matcher.footprint_size is None
        with pytest.raises(RuntimeError, match="No template"):
            matcher.match(np.zeros((20, 20), dtype=np.uint8))

    def test_init_drops_template(self, shape_template):
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        matcher.init(kblur=5, ksobel=3, magthr=0.3, angstep=12)
        assert not matcher.has_template
        assert matcher.encoder_params == EncoderParams(kblur=5, ksobel=3, magthr=0.3,
                                                       angstep=12)
        with pytest.raises(RuntimeError):
            matcher.process(shape_template)

        matcher.set_template(shape_template)
        assert matcher.table.max_code == 13
        assert matcher.match(shape_template).point == (30, 30)

    def test_invalid_init_keeps_state(self, shape_template):
        matcher = GradientMatcher()
        table = matcher.set_template(shape_template)
        with pytest.raises(ValueError):
            matcher.init(ksobel=4)
        assert matcher.table is table
        assert matcher.encoder_params == EncoderParams()

    def test_set_template_replaces_table(self, shape_template):
        matcher = GradientMatcher()
        first = matcher.set_template(shape_template)
        second = matcher.set_template(shape_template[10:50, 10:50])
        assert matcher.table is second
        assert second is not first
        assert matcher.footprint_size == (40, 40)

    def test_retemplate_from_scene_patch(self, shape_template, make_scene):
        """Cutting the template back out of a frame matches that frame."""
        scene = make_scene(shape_template, 60, 90)
        matcher = GradientMatcher()
        matcher.set_template(scene[60:120, 90:150])
        result = matcher.match(scene)
        assert result.point == (120, 90)
        assert result.confidence == pytest.approx(1.0)

    def test_degenerate_template(self):
        matcher = GradientMatcher()
        with pytest.warns(UserWarning, match="no pixels with a valid gradient"):
            table = matcher.set_template(np.full((30, 30), 100, dtype=np.uint8))
        assert table.is_vacuous
        assert matcher.max_votes == 0
        result = matcher.match(np.full((50, 50), 100, dtype=np.uint8))
        assert result.confidence == 0.0

    def test_set_vote_params(self):
        matcher = GradientMatcher()
        matcher.set_vote_params(loop_step=3)
        assert matcher.vote_params == VoteParams(loop_step=3, bounded=False)
        matcher.set_vote_params(bounded=True)
        assert matcher.vote_params == VoteParams(loop_step=3, bounded=True)
        with pytest.raises(ValueError):
            matcher.set_vote_params(loop_step=0)
        assert matcher.vote_params.loop_step == 3

    def test_verbose_summary(self, shape_template, capsys):
        matcher = GradientMatcher(verbose=True)
        matcher.set_template(shape_template)
        err = capsys.readouterr().err
        assert "[matcher] template 60x60" in err
        assert "self_match" in err


class TestLoadTemplate:

    def test_load(self, shape_template, tmp_path):
        path = tmp_path / "shape.png"
        cv2.imwrite(str(path), shape_template)
        matcher = GradientMatcher()
        image = matcher.load_template(str(path))
        np.testing.assert_array_equal(image, shape_template)
        assert matcher.match(shape_template).point == (30, 30)

    @pytest.mark.parametrize("prescale, size", [(2.0, 120), (0.5, 30)])
    def test_prescale(self, shape_template, tmp_path, prescale, size):
        path = tmp_path / "shape.png"
        cv2.imwrite(str(path), shape_template)
        matcher = GradientMatcher()
        image = matcher.load_template(str(path), prescale=prescale)
        assert image.shape == (size, size)
        assert matcher.footprint_size == (size, size)

    def test_color_file_read_as_gray(self, shape_template, tmp_path):
        path = tmp_path / "shape_color.png"
        cv2.imwrite(str(path), cv2.cvtColor(shape_template, cv2.COLOR_GRAY2BGR))
        image = GradientMatcher().load_template(str(path))
        assert image.ndim == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Cannot read template"):
            GradientMatcher().load_template(str(tmp_path / "nope.png"))

    def test_prescale_too_small(self, shape_template, tmp_path):
        path = tmp_path / "shape.png"
        cv2.imwrite(str(path), shape_template)
        matcher = GradientMatcher()
        with pytest.raises(ValueError, match="empty template"):
            matcher.load_template(str(path), prescale=0.001)
        assert not matcher.has_template

    @pytest.mark.parametrize("prescale", [0, -1.5])
    def test_bad_prescale(self, shape_template, tmp_path, prescale):
        path = tmp_path / "shape.png"
        cv2.imwrite(str(path), shape_template)
        with pytest.raises(ValueError, match="prescale"):
            GradientMatcher().load_template(str(path), prescale=prescale)


# ---------------------------------------------------------------------------
# Concurrent re-templating
# ---------------------------------------------------------------------------

class TestConcurrentSwap:

    def test_swaps_during_matching(self, shape_template, make_scene):
        """Every match runs against one complete table, old or new."""
        small = shape_template[5:55, 5:55]     # same shapes, same center
        scene = make_scene(shape_template, 50, 70)
        matcher = GradientMatcher()
        big_table = matcher.set_template(shape_template)
        small_table = matcher.set_template(small)
        expected = {
            big_table.ideal_vote_total,
            small_table.ideal_vote_total,
        }

        errors = []
        stop = threading.Event()

        def swapper():
            images = itertools.cycle([shape_template, small])
            try:
                while not stop.is_set():
                    matcher.set_template(next(images))
            except Exception as e:  # surfaced through the errors list
                errors.append(e)

        thread = threading.Thread(target=swapper, daemon=True)
        thread.start()
        try:
            for _ in range(30):
                result = matcher.match(scene)
                # a perfect match for either template scores its own ideal
                assert result.point == (100, 80)
                assert result.votes in expected
                assert result.confidence == pytest.approx(1.0)
        finally:
            stop.set()
            thread.join(timeout=10)

        assert not errors
        assert matcher.table.ideal_vote_total in expected

    def test_snapshot_survives_swap(self, shape_template):
        matcher = GradientMatcher()
        old = matcher.set_template(shape_template)
        new = matcher.set_template(shape_template[5:55, 5:55])
        assert old.footprint_size == (60, 60)
        assert new.footprint_size == (50, 50)
        assert old.offsets.flags.writeable is False

    def test_init_during_build_discards_stale_table(self, shape_template, monkeypatch):
        """A table built with replaced encoder settings is never published."""
        import cghmatch.matcher as matcher_module

        matcher = GradientMatcher()
        real_build = matcher_module.build_lookup_table

        def build_then_reconfigure(*args, **kwargs):
            table = real_build(*args, **kwargs)
            matcher.init(angstep=16)
            return table

        monkeypatch.setattr(matcher_module, "build_lookup_table", build_then_reconfigure)
        with pytest.raises(RuntimeError, match="Encoder settings changed"):
            matcher.set_template(shape_template)
        assert not matcher.has_template
        assert matcher.encoder_params.max_code == 17

        monkeypatch.setattr(matcher_module, "build_lookup_table", real_build)
        table = matcher.set_template(shape_template)
        assert table.max_code == matcher.encoder_params.max_code == 17
        assert matcher.match(shape_template).point == (30, 30)

    def test_process_pairs_encoder_with_table(self, shape_template):
        """Frames are encoded with the settings the current table was built with."""
        matcher = GradientMatcher()
        matcher.set_template(shape_template)
        matcher.init(ksobel=3, angstep=12)
        with pytest.raises(RuntimeError, match="No template"):
            matcher.process(shape_template)
        matcher.set_template(shape_template)
        encoded, _, result = matcher.process(shape_template)
        assert encoded.max() <= matcher.table.max_code == 13
        assert result.confidence == pytest.approx(1.0)
