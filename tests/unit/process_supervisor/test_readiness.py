from storage_node.process_supervisor_helpers import Readiness, ReadinessDetector


def test_ready_phrases_on_stdout():
    detector = ReadinessDetector()
    assert detector.check("2024/01/01 Starting proofofaccess node") is Readiness.READY
    assert detector.check("IPFS node ID: 12D3Koo") is Readiness.READY
    assert detector.check("Starting proofofaccess node", "stderr") is None
    assert detector.check("loading config") is None


def test_peer_dial_on_stderr_means_ready():
    assert ReadinessDetector().check("Connecting to wss://peer.example", "stderr") is Readiness.READY


def test_failure_phrases_win_on_either_stream():
    detector = ReadinessDetector()
    assert detector.check("Error getting IPFS node ID: refused") is Readiness.FAILED
    assert detector.check("failed to connect to ipfs", "stderr") is Readiness.FAILED


def test_custom_phrases():
    detector = ReadinessDetector(["listening"], stderr_ready_phrases=(), failure_phrases=("boom",))
    assert detector.check("listening on :8000") is Readiness.READY
    assert detector.check("BOOM") is Readiness.FAILED
