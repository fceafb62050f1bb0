import unittest
from datetime import datetime, timezone

from core.contracts import EventType, RecognitionStatus
from core.errors import InvalidTransition
from core.state import RecognitionStateMachine

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class TestRecognitionStateMachine(unittest.TestCase):
    def setUp(self):
        self.sm = RecognitionStateMachine()
        self.seen = []
        self.sm.subscribe(self.seen.append)

    def test_cycle_walks_waiting_processing_terminal_waiting(self):
        self.assertIs(self.sm.status, RecognitionStatus.WAITING)
        self.assertTrue(self.sm.begin(EventType.CHECKOUT, "MANUAL", T0))
        self.assertIs(self.sm.status, RecognitionStatus.PROCESSING)
        self.sm.resolve_error(code="X", title="t", message="m", resolved_at=T0)
        self.assertTrue(self.sm.snapshot.is_terminal)
        self.assertTrue(self.sm.reset())
        snap = self.sm.snapshot
        self.assertIs(snap.status, RecognitionStatus.WAITING)
        self.assertIs(snap.event_type, EventType.CHECKOUT)
        self.assertEqual(snap.seq, 1)
        self.assertEqual(snap.code, "")
        self.assertEqual(
            [s.status for s in self.seen],
            [RecognitionStatus.PROCESSING, RecognitionStatus.ERROR, RecognitionStatus.WAITING],
        )

    def test_begin_outside_waiting_is_noop(self):
        self.assertTrue(self.sm.begin(EventType.CHECKIN, "MANUAL", T0))
        self.assertFalse(self.sm.begin(EventType.CHECKIN, "AUTO", T0))
        self.assertEqual(self.sm.snapshot.seq, 1)
        self.assertEqual(self.sm.snapshot.source, "MANUAL")

    def test_resolve_requires_processing(self):
        with self.assertRaises(InvalidTransition):
            self.sm.resolve_success(title="t", message="m", resolved_at=T0)
        self.sm.begin(EventType.CHECKIN, "MANUAL", T0)
        self.sm.resolve_success(title="t", message="m", resolved_at=T0, employee_ref=7)
        with self.assertRaises(InvalidTransition):
            self.sm.resolve_error(code="X", title="t", message="m", resolved_at=T0)
        self.assertIs(self.sm.status, RecognitionStatus.SUCCESS)
        self.assertEqual(self.sm.snapshot.code, "OK")

    def test_reset_ignored_while_processing_or_waiting(self):
        self.assertFalse(self.sm.reset())
        self.sm.begin(EventType.CHECKIN, "MANUAL", T0)
        self.assertFalse(self.sm.reset())
        self.assertIs(self.sm.status, RecognitionStatus.PROCESSING)

    def test_reset_clears_identity(self):
        self.sm.begin(EventType.CHECKIN, "MANUAL", T0)
        self.sm.resolve_success(
            title="t", message="m", resolved_at=T0, employee_ref=7, warning="w", inferred=True
        )
        self.sm.reset()
        snap = self.sm.snapshot
        self.assertIsNone(snap.user)
        self.assertIsNone(snap.employee_ref)
        self.assertIsNone(snap.warning)
        self.assertFalse(snap.inferred)

    def test_observer_failure_does_not_block_transition(self):
        def broken(_snap):
            raise RuntimeError("boom")

        sm = RecognitionStateMachine()
        seen = []
        sm.subscribe(broken)
        sm.subscribe(seen.append)
        with self.assertLogs("attendance_kiosk.state", level="ERROR"):
            self.assertTrue(sm.begin(EventType.CHECKIN, "MANUAL", T0))
        self.assertEqual(len(seen), 1)

    def test_set_event_type_notifies_once(self):
        self.assertTrue(self.sm.set_event_type(EventType.CHECKOUT))
        self.assertTrue(self.sm.set_event_type(EventType.CHECKOUT))
        self.assertIs(self.sm.event_type, EventType.CHECKOUT)
        self.assertEqual(len(self.seen), 1)

    def test_event_type_is_fixed_for_the_cycle_in_flight(self):
        self.sm.begin(EventType.CHECKIN, "MANUAL", T0)
        self.assertFalse(self.sm.set_event_type(EventType.CHECKOUT))
        snap = self.sm.resolve_success(title="t", message="m", resolved_at=T0)
        self.assertIs(snap.event_type, EventType.CHECKIN)
        self.assertTrue(self.sm.set_event_type(EventType.CHECKOUT))
        self.assertIs(self.sm.event_type, EventType.CHECKOUT)


if __name__ == "__main__":
    unittest.main()
