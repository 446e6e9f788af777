"""
User-Agent 기반 디바이스 분류.

규칙 테이블은 위에서부터 순서대로 평가하며 처음 일치한 항목이 결과가 된다.
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

UNKNOWN = "unknown"

Rule = Tuple[str, Tuple[str, ...]]

DEVICE_CLASS_RULES: Sequence[Rule] = (
    ("bot", ("bot", "crawler", "spider", "slurp", "headless", "curl/", "wget", "python-requests", "httpx", "facebookexternalhit")),
    ("tablet", ("ipad", "tablet", "kindle", "silk/", "playbook")),
    ("mobile", ("mobile", "iphone", "ipod", "android", "windows phone", "blackberry", "opera mini")),
    ("desktop", ("windows nt", "macintosh", "mac os x", "x11", "linux", "cros")),
)

# iOS UA 에 "Mac OS X", Android UA 에 "Linux" 가 포함되므로 순서 유지 필요
PLATFORM_RULES: Sequence[Rule] = (
    ("ios", ("iphone", "ipad", "ipod")),
    ("android", ("android",)),
    ("windows", ("windows",)),
    ("macos", ("macintosh", "mac os x")),
    ("chromeos", ("cros",)),
    ("linux", ("linux", "x11")),
)

# Chrome 계열 UA 에 "Safari/" 가, Edge/Opera UA 에 "Chrome/" 이 포함됨
BROWSER_RULES: Sequence[Rule] = (
    ("edge", ("edg/", "edge/")),
    ("opera", ("opr/", "opera")),
    ("samsung", ("samsungbrowser",)),
    ("chrome", ("chrome/", "crios/")),
    ("firefox", ("firefox/", "fxios/")),
    ("safari", ("safari/",)),
)


@dataclass(frozen=True)
class DeviceInfo:
    device_class: str = UNKNOWN
    platform: str = UNKNOWN
    browser: str = UNKNOWN


def match_rule(rules: Sequence[Rule], user_agent: Optional[str], default: str = UNKNOWN) -> str:
    if not user_agent:
        return default
    ua = user_agent.lower()
    for label, needles in rules:
        if any(needle in ua for needle in needles):
            return label
    return default


def classify_device(user_agent: Optional[str]) -> DeviceInfo:
    return DeviceInfo(
        device_class=match_rule(DEVICE_CLASS_RULES, user_agent),
        platform=match_rule(PLATFORM_RULES, user_agent),
        browser=match_rule(BROWSER_RULES, user_agent),
    )
