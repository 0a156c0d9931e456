"""平均趋向指数（ADX）及 +DI/-DI。

ADX 衡量趋势强度，与方向无关；方向由 +DI/-DI 的相对大小给出。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from trendwarden.common.models.models import Candle
from trendwarden.strategies.factors.atr import true_range


@dataclass(frozen=True)
class ADXResult:
    adx: list[float]
    plus_di: list[float]
    minus_di: list[float]


def _directional_movement(candles: Sequence[Candle]) -> tuple[list[float], list[float]]:
    plus_dm = [0.0]
    minus_dm = [0.0]
    for i in range(1, len(candles)):
        up = candles[i].high - candles[i - 1].high
        down = candles[i - 1].low - candles[i].low
        # 只有较大且为正的一侧计入；相等时两侧都为 0
        plus_dm.append(up if up > down and up > 0 else 0.0)
        minus_dm.append(down if down > up and down > 0 else 0.0)
    return plus_dm, minus_dm


def adx(candles: Sequence[Candle], period: int = 14) -> ADXResult:
    """计算 ADX/+DI/-DI（Wilder 平滑）。

    Parameters
    ----------
    candles:
        升序 K 线。
    period:
        平滑周期，默认 14。

    Returns
    -------
    ADXResult
        三条与输入等长的序列。K 线不足 `period + 1` 根时全部为 0。

    Notes
    -----
    - 平滑 TR/+DM/-DM 以下标 1..period 的和为初值，之后 `s = s - s/period + x`；
    - `+DI = 100 * s(+DM) / s(TR)`，`s(TR) == 0` 时为 0；
    - `DX = 100 * |+DI - -DI| / (+DI + -DI)`，分母为 0 时为 0；
    - 积累满 `period` 个 DX 后，首个 ADX 取均值，之后 `(prev*(period-1) + dx) / period`。
    """
    if period <= 0:
        raise ValueError("ADX period must be > 0")
    n = len(candles)
    if n < period + 1:
        zeros = [0.0] * n
        return ADXResult(adx=list(zeros), plus_di=list(zeros), minus_di=list(zeros))

    tr = true_range(candles)
    plus_dm, minus_dm = _directional_movement(candles)

    s_tr = sum(tr[1 : period + 1])
    s_plus = sum(plus_dm[1 : period + 1])
    s_minus = sum(minus_dm[1 : period + 1])

    adx_out = [0.0] * period
    plus_out = [0.0] * period
    minus_out = [0.0] * period
    dx_values: list[float] = []

    for i in range(period, n):
        if i > period:
            s_tr = s_tr - s_tr / period + tr[i]
            s_plus = s_plus - s_plus / period + plus_dm[i]
            s_minus = s_minus - s_minus / period + minus_dm[i]

        p_di = s_plus / s_tr * 100.0 if s_tr > 0 else 0.0
        m_di = s_minus / s_tr * 100.0 if s_tr > 0 else 0.0
        plus_out.append(p_di)
        minus_out.append(m_di)

        di_sum = p_di + m_di
        dx = abs(p_di - m_di) / di_sum * 100.0 if di_sum > 0 else 0.0
        dx_values.append(dx)

        if len(dx_values) < period:
            adx_out.append(0.0)
        elif len(dx_values) == period:
            adx_out.append(sum(dx_values) / period)
        else:
            adx_out.append((adx_out[-1] * (period - 1) + dx) / period)

    return ADXResult(adx=adx_out, plus_di=plus_out, minus_di=minus_out)
