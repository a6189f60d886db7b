"""
Device Confidence Scorer
------------------------
Scores how closely a device matches the devices a user has signed in from
before, using independent weighted signals.

Location:
stepguard/core/device_confidence.py

Scoring:
- First device for an account scores 100 (nothing to compare against)
- Each prior session is scored on its own; the best match wins
- Missing fields contribute nothing for their signal
"""

from typing import Iterable, Optional, Sequence

from stepguard.core.policy import ConfidenceLevel, DeviceTrustPolicy
from stepguard.db.models.device_model import DeviceInfo
from stepguard.db.models.device_session_model import DeviceSessionModel
from stepguard.utils.ip_utils import ipv4_prefix

MAX_SCORE = 100


def _os_family(os_name: Optional[str]) -> Optional[str]:
    if not os_name:
        return None
    return os_name.split(" ")[0]


class DeviceConfidenceScorer:
    """
    Weighted match scorer between a new device and prior device sessions.
    """

    def __init__(self, policy: Optional[DeviceTrustPolicy] = None):
        self.policy = policy or DeviceTrustPolicy()

        # ------------------------------------------
        # SIGNAL DEFINITIONS
        # ------------------------------------------
        self.SIGNALS = {
            "device_name": {
                "weight": 30,
                "message": "Same device name as a previous session.",
            },
            "browser": {
                "weight": 20,
                "message": "Same browser as a previous session.",
            },
            "os_family": {
                "weight": 20,
                "message": "Same operating system family as a previous session.",
            },
            "ip_range": {
                "weight": 15,
                "message": "Same /24 network as a previous session.",
            },
        }

    def __call__(self, device: DeviceInfo, prior_sessions: Sequence[DeviceSessionModel]) -> int:
        """
        Parameters
        ----------
        device : DeviceInfo
            Descriptor of the device signing in now
        prior_sessions : Sequence[DeviceSessionModel]
            The user's existing sessions, most recent first

        Returns
        -------
        int
            Confidence score between 0 and 100
        """
        if not prior_sessions:
            return MAX_SCORE

        best = 0
        for session in prior_sessions:
            score = self.match_score(session.device, device)
            # strict comparison keeps the first maximal session on ties
            if score > best:
                best = score
        return min(best, MAX_SCORE)

    def _triggered(self, stored: DeviceInfo, current: DeviceInfo) -> Iterable[str]:
        if stored.device_name == current.device_name:
            yield "device_name"

        if stored.browser and stored.browser == current.browser:
            yield "browser"

        stored_os = _os_family(stored.os)
        if stored_os and stored_os == _os_family(current.os):
            yield "os_family"

        stored_ip = ipv4_prefix(stored.ip_address)
        if stored_ip and stored_ip == ipv4_prefix(current.ip_address):
            yield "ip_range"

    def match_score(self, stored: DeviceInfo, current: DeviceInfo) -> int:
        return sum(self.SIGNALS[name]["weight"] for name in self._triggered(stored, current))

    def get_detailed_score(self, device: DeviceInfo, prior_sessions: Sequence[DeviceSessionModel]) -> dict:
        """
        Full signal breakdown for the best-matching prior session (for debugging/analysis).
        """
        if not prior_sessions:
            return {
                "score": MAX_SCORE,
                "level": self.level(MAX_SCORE).value,
                "matched_session_id": None,
                "signals": {},
            }

        best_session = prior_sessions[0]
        best_score = self.match_score(best_session.device, device)
        for session in prior_sessions[1:]:
            score = self.match_score(session.device, device)
            if score > best_score:
                best_session, best_score = session, score

        triggered = set(self._triggered(best_session.device, device))
        signals = {
            name: {
                "score": rule["weight"] if name in triggered else 0,
                "triggered": name in triggered,
                "message": rule["message"] if name in triggered else "No match.",
            }
            for name, rule in self.SIGNALS.items()
        }

        score = min(best_score, MAX_SCORE)
        return {
            "score": score,
            "level": self.level(score).value,
            "matched_session_id": best_session.id,
            "signals": signals,
        }

    def level(self, score: int) -> ConfidenceLevel:
        return self.policy.confidence_level(score)


_default_scorer = DeviceConfidenceScorer()


def compute_confidence(device: DeviceInfo, prior_sessions: Sequence[DeviceSessionModel]) -> int:
    return _default_scorer(device, prior_sessions)


def get_confidence_level(score: int) -> ConfidenceLevel:
    return _default_scorer.level(score)
