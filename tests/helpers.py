"""Constants and helpers shared by the StakePool tests."""

from stakepool_core.accrual import SECONDS_PER_YEAR
from stakepool_core.address import address_from_label

ONE = 10 ** 18                      # one whole staked-asset unit
ONE_YEAR = SECONDS_PER_YEAR
START = 1_700_000_000

DEPLOYER = address_from_label("deployer")
ALICE = address_from_label("alice")
BOB = address_from_label("bob")
POOL = address_from_label("pool")

USER_FUNDS = 1_000 * ONE
REWARD_SUPPLY = 10 ** 30


class FakeClock:
    """Manually advanced clock returning whole seconds."""

    def __init__(self, start: int = START):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds
