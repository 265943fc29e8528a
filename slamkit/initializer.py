"""Monocular map initialisation from two views.

A homography and a fundamental matrix are fitted to the matches by RANSAC.
The model that explains the matches better is decomposed into a camera
motion, and the inlier matches are triangulated.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional, Sequence

import numpy as np

from slamkit.two_view import check_rt, compute_f21, compute_h21, normalize

__all__ = ["Initializer", "Reconstruction", "ModelFit"]

_SET_SIZE = 8
# Chi-square thresholds at 95% for one (3.841) and two (5.991) degrees of freedom.
_TH_HOMOGRAPHY = 5.991
_TH_FUNDAMENTAL = 3.841
_TH_SCORE = 5.991
_HOMOGRAPHY_RATIO = 0.40
_MIN_PARALLAX = 1.0
_MIN_TRIANGULATED = 50


@dataclass
class Reconstruction:
    """Motion of the second camera and the triangulated structure.

    ``points3d`` and ``triangulated`` are indexed like the keypoints of the
    reference frame; ``translation`` has unit length.
    """

    rotation: np.ndarray
    translation: np.ndarray
    points3d: np.ndarray
    triangulated: list[bool] = field(default_factory=list)


class ModelFit(NamedTuple):
    """Best model found by RANSAC, its score and its per-match inlier flags."""

    inliers: list[bool]
    score: float
    matrix: Optional[np.ndarray]


class Initializer:
    """Initialises a map from a reference frame and a later frame of one camera.

    Frames need a 3x3 calibration ``k`` and undistorted keypoints ``keys_un``
    (objects with ``x`` and ``y``).
    """

    def __init__(self, reference_frame: Any, sigma: float = 1.0, iterations: int = 200) -> None:
        self.k = np.array(reference_frame.k, dtype=np.float64)
        self.keys1 = list(reference_frame.keys_un)
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self.keys2: list = []
        self.matches: list[tuple[int, int]] = []
        self.matched1: list[bool] = []
        self.sets: list[list[int]] = []
        self._rng = random.Random(0)

    def initialize(self, current_frame: Any, matches12: Sequence[int]) -> Optional[Reconstruction]:
        """Reconstruct motion and structure, or return ``None`` if it cannot be done.

        ``matches12[i]`` is the index in ``current_frame`` matched to reference
        keypoint ``i``, or a negative value when there is none.
        """
        self.keys2 = list(current_frame.keys_un)
        self.matches = [(i, int(m)) for i, m in enumerate(matches12) if m >= 0]
        self.matched1 = [m >= 0 for m in matches12]

        count = len(self.matches)
        if count < _SET_SIZE:
            raise ValueError(f"at least {_SET_SIZE} matches are needed, got {count}")

        self.sets = []
        for _ in range(self.max_iterations):
            available = list(range(count))
            chosen = []
            for _ in range(_SET_SIZE):
                randi = self._rng.randint(0, len(available) - 1)
                chosen.append(available[randi])
                available[randi] = available[-1]
                available.pop()
            self.sets.append(chosen)

        fit_h = self.find_homography()
        fit_f = self.find_fundamental()

        total = fit_h.score + fit_f.score
        if not total > 0:
            return None
        ratio_h = fit_h.score / total

        if ratio_h > _HOMOGRAPHY_RATIO:
            if fit_h.matrix is None:
                return None
            return self.reconstruct_h(fit_h.inliers, fit_h.matrix, self.k, _MIN_PARALLAX, _MIN_TRIANGULATED)
        if fit_f.matrix is None:
            return None
        return self.reconstruct_f(fit_f.inliers, fit_f.matrix, self.k, _MIN_PARALLAX, _MIN_TRIANGULATED)

    def _normalized(self) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        return pn1, t1, pn2, t2

    def _sample(self, pn1: np.ndarray, pn2: np.ndarray, chosen: Sequence[int]) -> tuple[np.ndarray, np.ndarray]:
        pairs = np.array([self.matches[idx] for idx in chosen], dtype=int)
        return pn1[pairs[:, 0]], pn2[pairs[:, 1]]

    def find_homography(self) -> ModelFit:
        """RANSAC over the prepared minimal sets for the homography ``H21``."""
        pn1, t1, pn2, t2 = self._normalized()
        t2_inv = np.linalg.inv(t2)
        best = ModelFit([False] * len(self.matches), 0.0, None)
        for chosen in self.sets:
            s1, s2 = self._sample(pn1, pn2, chosen)
            h21 = t2_inv @ compute_h21(s1, s2) @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = self.check_homography(h21, h12, self.sigma)
            if score > best.score:
                best = ModelFit(inliers, score, h21.copy())
        return best

    def find_fundamental(self) -> ModelFit:
        """RANSAC over the prepared minimal sets for the fundamental matrix ``F21``."""
        pn1, t1, pn2, t2 = self._normalized()
        t2_t = t2.T
        best = ModelFit([False] * len(self.matches), 0.0, None)
        for chosen in self.sets:
            s1, s2 = self._sample(pn1, pn2, chosen)
            f21 = t2_t @ compute_f21(s1, s2) @ t1
            score, inliers = self.check_fundamental(f21, self.sigma)
            if score > best.score:
                best = ModelFit(inliers, score, f21.copy())
        return best

    def _match_coordinates(self) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        if not self.matches:
            empty = np.zeros(0)
            return empty, empty, empty, empty
        p1 = np.array([(self.keys1[i1].x, self.keys1[i1].y) for i1, _ in self.matches], dtype=np.float64)
        p2 = np.array([(self.keys2[i2].x, self.keys2[i2].y) for _, i2 in self.matches], dtype=np.float64)
        return p1[:, 0], p1[:, 1], p2[:, 0], p2[:, 1]

    @staticmethod
    def _score(chi1: np.ndarray, chi2: np.ndarray, th: float, th_score: float) -> tuple[float, list[bool]]:
        ok1 = ~(chi1 > th)
        ok2 = ~(chi2 > th)
        score = float(np.sum(np.where(ok1, th_score - chi1, 0.0)) + np.sum(np.where(ok2, th_score - chi2, 0.0)))
        return score, [bool(flag) for flag in ok1 & ok2]

    def check_homography(self, h21: Any, h12: Any, sigma: float) -> tuple[float, list[bool]]:
        """Score a homography by symmetric transfer error; returns score and inlier flags."""
        h = np.asarray(h21, dtype=np.float64)
        hinv = np.asarray(h12, dtype=np.float64)
        u1, v1, u2, v2 = self._match_coordinates()
        inv_sigma2 = 1.0 / (sigma * sigma)
        with np.errstate(divide="ignore", invalid="ignore"):
            w2in1 = 1.0 / (hinv[2, 0] * u2 + hinv[2, 1] * v2 + hinv[2, 2])
            u2in1 = (hinv[0, 0] * u2 + hinv[0, 1] * v2 + hinv[0, 2]) * w2in1
            v2in1 = (hinv[1, 0] * u2 + hinv[1, 1] * v2 + hinv[1, 2]) * w2in1
            chi1 = ((u1 - u2in1) ** 2 + (v1 - v2in1) ** 2) * inv_sigma2

            w1in2 = 1.0 / (h[2, 0] * u1 + h[2, 1] * v1 + h[2, 2])
            u1in2 = (h[0, 0] * u1 + h[0, 1] * v1 + h[0, 2]) * w1in2
            v1in2 = (h[1, 0] * u1 + h[1, 1] * v1 + h[1, 2]) * w1in2
            chi2 = ((u2 - u1in2) ** 2 + (v2 - v1in2) ** 2) * inv_sigma2
        return self._score(chi1, chi2, _TH_HOMOGRAPHY, _TH_HOMOGRAPHY)

    def check_fundamental(self, f21: Any, sigma: float) -> tuple[float, list[bool]]:
        """Score a fundamental matrix by point-to-epipolar-line distances."""
        f = np.asarray(f21, dtype=np.float64)
        u1, v1, u2, v2 = self._match_coordinates()
        inv_sigma2 = 1.0 / (sigma * sigma)
        with np.errstate(divide="ignore", invalid="ignore"):
            a2 = f[0, 0] * u1 + f[0, 1] * v1 + f[0, 2]
            b2 = f[1, 0] * u1 + f[1, 1] * v1 + f[1, 2]
            c2 = f[2, 0] * u1 + f[2, 1] * v1 + f[2, 2]
            num2 = a2 * u2 + b2 * v2 + c2
            chi1 = num2 * num2 / (a2 * a2 + b2 * b2) * inv_sigma2

            a1 = f[0, 0] * u2 + f[1, 0] * v2 + f[2, 0]
            b1 = f[0, 1] * u2 + f[1, 1] * v2 + f[2, 1]
            c1 = f[0, 2] * u2 + f[1, 2] * v2 + f[2, 2]
            num1 = a1 * u1 + b1 * v1 + c1
            chi2 = num1 * num1 / (a1 * a1 + b1 * b1) * inv_sigma2
        return self._score(chi1, chi2, _TH_FUNDAMENTAL, _TH_SCORE)

    def _check(self, r: np.ndarray, t: np.ndarray, inliers: Sequence[bool], k: np.ndarray):
        return check_rt(r, t, self.keys1, self.keys2, self.matches, inliers, k, 4.0 * self.sigma2)

    def reconstruct_f(
        self,
        inliers: Sequence[bool],
        f21: Any,
        k: Any,
        min_parallax: float = _MIN_PARALLAX,
        min_triangulated: int = _MIN_TRIANGULATED,
    ) -> Optional[Reconstruction]:
        """Pick the one of four essential-matrix motions that triangulates best."""
        n_inliers = sum(1 for flag in inliers if flag)
        kmat = np.asarray(k, dtype=np.float64)
        e21 = kmat.T @ np.asarray(f21, dtype=np.float64) @ kmat

        from slamkit.two_view import decompose_essential

        r1, r2, t = decompose_essential(e21)
        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
        checks = [self._check(r, tt, inliers, kmat) for r, tt in hypotheses]
        goods = [c.n_good for c in checks]
        max_good = max(goods)

        min_good = max(int(0.9 * n_inliers), min_triangulated)
        n_similar = sum(1 for g in goods if g > 0.7 * max_good)
        if max_good < min_good or n_similar > 1:
            return None

        best = goods.index(max_good)
        check = checks[best]
        if check.parallax > min_parallax:
            r, tt = hypotheses[best]
            return Reconstruction(r.copy(), tt.copy(), check.points3d, check.good)
        return None

    def reconstruct_h(
        self,
        inliers: Sequence[bool],
        h21: Any,
        k: Any,
        min_parallax: float = _MIN_PARALLAX,
        min_triangulated: int = _MIN_TRIANGULATED,
    ) -> Optional[Reconstruction]:
        """Pick the best of eight homography motions (Faugeras' decomposition)."""
        n_inliers = sum(1 for flag in inliers if flag)
        kmat = np.asarray(k, dtype=np.float64)
        a = np.linalg.inv(kmat) @ np.asarray(h21, dtype=np.float64) @ kmat
        u, w, vt = np.linalg.svd(a, full_matrices=True)
        s = float(np.linalg.det(u) * np.linalg.det(vt))
        d1, d2, d3 = (float(x) for x in w)

        if d2 == 0.0 or d3 == 0.0 or d1 / d2 < 1.00001 or d2 / d3 < 1.00001:
            return None

        aux1 = math.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        aux3 = math.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        x1 = [aux1, aux1, -aux1, -aux1]
        x3 = [aux3, -aux3, aux3, -aux3]

        rotations: list[np.ndarray] = []
        translations: list[np.ndarray] = []

        aux_stheta = math.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        stheta = [aux_stheta, -aux_stheta, -aux_stheta, aux_stheta]
        for i in range(4):
            rp = np.eye(3)
            rp[0, 0] = ctheta
            rp[0, 2] = -stheta[i]
            rp[2, 0] = stheta[i]
            rp[2, 2] = ctheta
            rotations.append(s * u @ rp @ vt)
            tvec = u @ (np.array([x1[i], 0.0, -x3[i]]) * (d1 - d3))
            translations.append(tvec / np.linalg.norm(tvec))

        aux_sphi = math.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3)) / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        sphi = [aux_sphi, -aux_sphi, -aux_sphi, aux_sphi]
        for i in range(4):
            rp = np.eye(3)
            rp[0, 0] = cphi
            rp[0, 2] = sphi[i]
            rp[1, 1] = -1.0
            rp[2, 0] = sphi[i]
            rp[2, 2] = -cphi
            rotations.append(s * u @ rp @ vt)
            tvec = u @ (np.array([x1[i], 0.0, x3[i]]) * (d1 + d3))
            translations.append(tvec / np.linalg.norm(tvec))

        best_good = 0
        second_best_good = 0
        best_index = -1
        best_parallax = -1.0
        best_check = None
        for index, (r, tvec) in enumerate(zip(rotations, translations)):
            check = self._check(r, tvec, inliers, kmat)
            if check.n_good > best_good:
                second_best_good = best_good
                best_good = check.n_good
                best_index = index
                best_parallax = check.parallax
                best_check = check
            elif check.n_good > second_best_good:
                second_best_good = check.n_good

        if (
            best_check is not None
            and second_best_good < 0.75 * best_good
            and best_parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n_inliers
        ):
            return Reconstruction(
                rotations[best_index].copy(),
                translations[best_index].copy(),
                best_check.points3d,
                best_check.good,
            )
        return None