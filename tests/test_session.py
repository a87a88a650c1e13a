import json
import threading
import unittest

from broadside.schemas import Config, Position
from broadside.services.opponent import IdlePolicy
from broadside.services.session import GameSession

from helpers import Clock

TURN = 2000


class TestGameSession(unittest.TestCase):

    def setUp(self):
        self.clock = Clock(0)
        self.session = GameSession(Config(result_reset_ms=2000), now=self.clock,
                                   policy=IdlePolicy(), log_enabled=False)

    def test_auto_start_on_first_tick(self):
        self.assertEqual(self.session.engine.mode, "start")
        self.assertFalse(self.session.tick(0))
        self.assertEqual(self.session.engine.mode, "playing")
        self.assertEqual(self.session.engine.next_tick_at, TURN)

    def test_no_auto_start(self):
        session = GameSession(Config(auto_start=False), now=self.clock, policy=IdlePolicy(), log_enabled=False)
        session.tick(0)
        self.assertEqual(session.engine.mode, "start")
        session.start()
        self.assertEqual(session.engine.mode, "playing")

    def test_votes_accepted_before_start(self):
        session = GameSession(Config(auto_start=False), now=self.clock, policy=IdlePolicy(), log_enabled=False)
        self.clock.t = 5000
        session.tick()
        res = session.submit_vote("alice", "FORWARD")
        self.assertTrue(res.ok)
        self.assertEqual(session.snapshot().queued_action, "FORWARD")

    def test_start_does_not_clear_result(self):
        self.session.tick(0)
        engine = self.session.engine
        engine.state = engine.state.model_copy(update={"result": "win", "result_at": 100.0, "mode": "resultSet"})
        self.clock.t = 200
        snap = self.session.start()
        self.assertEqual(snap.mode, "resultSet")
        self.assertEqual(snap.result, "win")

    def test_vote_counts_for_next_turn(self):
        self.session.tick(0)
        self.clock.t = 100
        res = self.session.submit_vote("alice", "forward")
        self.assertTrue(res.ok)
        self.assertTrue(self.session.tick(TURN))
        self.assertEqual(self.session.engine.state.ship.pos, Position(x=3, y=2))

    def test_vote_rejections(self):
        self.session.tick(0)
        self.clock.t = 100
        self.assertEqual(self.session.submit_vote("", "FORWARD").reason, "missing")
        self.assertEqual(self.session.submit_vote("alice", None).reason, "missing")
        self.assertEqual(self.session.submit_vote("alice", "JUMP").reason, "invalid")
        self.assertEqual(self.session.submit_vote("alice", "LEFT", 0).reason, "invalid")
        self.clock.t = TURN - 100
        res = self.session.submit_vote("alice", "LEFT")
        self.assertFalse(res.ok)
        self.assertEqual(res.reason, "locked")
        self.assertEqual(self.session.collector.voter_count(), 0)

    def test_vote_waits_for_session_lock(self):
        self.session.tick(0)
        self.clock.t = 100
        results = []
        with self.session.lock:
            th = threading.Thread(target=lambda: results.append(self.session.submit_vote("alice", "LEFT")))
            th.start()
            th.join(0.1)
            # ティック中は投票を記録しない
            self.assertTrue(th.is_alive())
            self.assertEqual(self.session.collector.voter_count(), 0)
        th.join(2)
        self.assertTrue(results[0].ok)
        self.assertEqual(self.session.collector.voter_count(), 1)

    def test_queue_action(self):
        res = self.session.queue_action({"type": "move", "move": "L"})
        self.assertTrue(res.accepted)
        self.assertEqual(res.action.type, "move")
        res = self.session.queue_action({"type": "dance"})
        self.assertFalse(res.accepted)

    def test_result_auto_reset(self):
        self.session.tick(0)
        engine = self.session.engine
        engine.state = engine.state.model_copy(update={"result": "loss", "result_at": 2000.0, "mode": "resultSet"})
        self.session.tick(3000)
        self.assertEqual(engine.mode, "resultSet")
        self.session.tick(4000)
        self.assertIsNone(engine.result)
        self.assertEqual(engine.mode, "playing")
        self.assertEqual(engine.turn_index, 0)
        self.assertEqual(engine.next_tick_at, 4000 + TURN)

    def test_no_auto_reset(self):
        session = GameSession(Config(auto_reset=False), now=self.clock, policy=IdlePolicy(), log_enabled=False)
        session.tick(0)
        engine = session.engine
        engine.state = engine.state.model_copy(update={"result": "win", "result_at": 0.0, "mode": "resultSet"})
        session.tick(60000)
        self.assertEqual(engine.result, "win")
        session.reset()
        self.assertIsNone(engine.result)

    def test_load_map(self):
        snap = self.session.load_map("grand-world")
        self.assertEqual(snap.state["map_id"], "grand-world")
        self.assertEqual(snap.mode, "start")

    def test_list_maps(self):
        maps = {m.id: m for m in self.session.list_maps().maps}
        self.assertEqual(set(maps), {"islands", "ice", "desert", "grand-world"})
        self.assertEqual((maps["islands"].cols, maps["islands"].rows), (7, 7))
        self.assertEqual((maps["grand-world"].cols, maps["grand-world"].rows), (25, 25))

    def test_subscribers_get_snapshots(self):
        q = self.session.subscribe()
        self.session.tick(0)
        data = json.loads(q.get_nowait())
        self.assertEqual(data["mode"], "playing")
        self.assertEqual(data["phase"], "voting")
        self.session.unsubscribe(q)
        self.session.tick(1)
        self.assertTrue(q.empty())
        # 二重解除は無視
        self.session.unsubscribe(q)

    def test_slow_subscriber_drops_frames(self):
        q = self.session.subscribe()
        for i in range(150):
            self.session.tick(i)
        self.assertEqual(q.qsize(), 100)


if __name__ == "__main__":
    unittest.main()
