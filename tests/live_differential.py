import math
import tempfile
import unittest

from dxbench.client.adapter import IndexClient
from dxbench.engine.differential import PHASE_RECORD, PHASE_REPLAY, run_query_command
from dxbench.util import parse_csv_tokens
from dxbench.workload.specs import parse_specs
from tests.conftest import SPECS_TOML
from tests.live_test_config import LIVE_HOSTS, require_live_tests


class TestLiveQueryReplay(unittest.TestCase):
    def setUp(self):
        require_live_tests()

    def test_record_then_replay_against_same_server(self):
        specs = parse_specs(SPECS_TOML)
        hosts = parse_csv_tokens(LIVE_HOSTS)
        with tempfile.TemporaryDirectory() as data_dir:
            with IndexClient(hosts) as client:
                first = run_query_command(client, specs, instance="candidate", data_dir=data_dir, batch_sizes=[20])
                second = run_query_command(client, specs, instance="primary", data_dir=data_dir, batch_sizes=[20])

        self.assertEqual(first.phase, PHASE_RECORD)
        self.assertEqual(second.phase, PHASE_REPLAY)
        bench = second.benchmarks[0]
        self.assertEqual(bench.size, 20)
        if bench.valid_queries:
            self.assertEqual(bench.num_correct, bench.valid_queries)
        else:
            self.assertTrue(math.isnan(bench.accuracy))


if __name__ == "__main__":
    unittest.main()
