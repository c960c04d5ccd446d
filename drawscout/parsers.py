"""テキスト断片を数値へ変換するパーサ.

どちらも例外を投げず、値が取れない場合は None を返す。
"""

from __future__ import annotations

import math
import re

_NON_MONEY = re.compile(r"[^\d.]")
_NON_DIGIT = re.compile(r"\D")
# 先頭から読める分だけ小数として解釈する（"1.2.3" -> 1.2）
_LEADING_FLOAT = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def parse_money(text: str | None) -> float | None:
    """金額テキストを float に変換する.

    数字と小数点以外をすべて取り除いてから解釈する。
    例: "£1,250.00" -> 1250.0, "0.99" -> 0.99, "Free" -> None
    """
    if not text:
        return None
    m = _LEADING_FLOAT.match(_NON_MONEY.sub("", text))
    if not m:
        return None
    value = float(m.group(0))
    return value if math.isfinite(value) else None


def parse_count(text: str | None) -> int | None:
    """件数テキストを int に変換する.

    数字以外をすべて取り除いてから解釈する。
    例: "1,000 tickets" -> 1000, "n/a" -> None
    """
    if not text:
        return None
    digits = _NON_DIGIT.sub("", text)
    if not digits:
        return None
    return int(digits)
