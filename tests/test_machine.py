"""
Machine tests: initialization, bet validation, spin settlement,
randomness cadence, owner configuration.
"""
import pytest

from slotchain.chain import (
    AuthorizationError,
    InsufficientFundsError,
    ReentrancyError,
    ValidationError,
)
from slotchain.engine import PayoutTable, SlotConfig, Symbol
from slotchain.machine import MachineState, SlotMachine

ONE = SlotConfig.ONE_TOKEN
FEED_ID = "0x" + "12345678" * 8

B, C, W, L = Symbol.BAR, Symbol.CHERRIES, Symbol.WATERMELON, Symbol.LOGO


class TestInitialization:
    def test_fields(self, machine, registry, token, oracle, machine_owner, house):
        assert machine.state == MachineState.ACTIVE
        assert machine.owner == machine_owner
        assert machine.oracle == oracle.address
        assert machine.oracle_feed_id == FEED_ID
        assert machine.jackpot_share == 500
        assert machine.house_edge == 500
        assert machine.randomness_refresh_interval == 1000
        assert machine.get_valid_bet_amounts() == list(SlotConfig.DEFAULT_BET_AMOUNTS)
        assert machine.payout_table == PayoutTable()
        assert machine.spin_count == 0
        assert machine.base_randomness != 0
        assert machine.last_randomness_refresh == machine.chain.block.timestamp - 3 * machine.chain.block_time

    def test_reinitialize_rejected(self, chain, machine, registry, token, oracle, player, machine_owner):
        with pytest.raises(ValidationError) as exc:
            chain.transact(
                player, machine.initialize,
                registry.address, token.address, oracle.address, FEED_ID, player, player,
            )
        assert exc.value.reason == "already initialized"
        assert machine.owner == machine_owner

    def test_initialize_rejects_zero_addresses(self, chain, registry, token, oracle, player):
        fresh = SlotMachine(chain)
        with pytest.raises(ValidationError):
            chain.transact(
                player, fresh.initialize,
                registry.address, token.address, oracle.address, FEED_ID, player, "0x" + "0" * 40,
            )
        assert fresh.state == MachineState.UNINITIALIZED

    def test_initialize_rejects_non_registry(self, chain, token, oracle, player, house):
        fresh = SlotMachine(chain)
        with pytest.raises(ValidationError) as exc:
            chain.transact(
                player, fresh.initialize,
                token.address, token.address, oracle.address, FEED_ID, player, house,
            )
        assert exc.value.reason == "invalid registry"

    def test_unregistered_machine_cannot_settle(self, chain, registry, token, oracle, player, house):
        # initializes fine, but the registry refuses its jackpot deposit
        rogue = SlotMachine(chain)
        chain.transact(
            player, rogue.initialize,
            registry.address, token.address, oracle.address, FEED_ID, player, house,
        )
        chain.transact(player, token.approve, rogue.address, ONE)
        with pytest.raises(AuthorizationError):
            chain.transact(player, rogue.spin, ONE)
        assert token.balance_of(player) == 1_000 * ONE


class TestBetValidation:
    @pytest.mark.parametrize("amount", [0, -ONE, 2 * ONE, 3 * ONE, 200 * ONE, ONE + 1])
    def test_invalid_amounts(self, chain, machine, player, token, amount):
        with pytest.raises(ValidationError) as exc:
            chain.transact(player, machine.spin, amount)
        assert exc.value.reason == "invalid bet amount"
        assert token.balance_of(player) == 1_000 * ONE
        assert machine.spin_count == 0

    @pytest.mark.parametrize("amount", SlotConfig.DEFAULT_BET_AMOUNTS)
    def test_valid_amounts(self, machine, amount):
        assert machine.is_valid_bet_amount(amount)

    def test_insufficient_allowance_leaves_state_unchanged(self, chain, machine, registry, player, token):
        chain.transact(player, token.approve, machine.address, ONE // 2)
        before = (machine.spin_count, machine.base_randomness, registry.jackpot_pool, token.balance_of(player))

        with pytest.raises(InsufficientFundsError):
            chain.transact(player, machine.spin, ONE)

        after = (machine.spin_count, machine.base_randomness, registry.jackpot_pool, token.balance_of(player))
        assert before == after
        assert machine.last_spin(player) is None


class TestSettlement:
    def test_losing_spin_splits_bet(self, chain, machine, registry, player, token, house, no_jackpot, fixed_reels):
        fixed_reels(C, C, W)
        result = chain.transact(player, machine.spin, ONE)

        assert result.reels == (C, C, W)
        assert result.payout == 0
        assert not result.won_jackpot
        assert result.bet_amount == ONE

        assert token.balance_of(player) == 999 * ONE
        assert token.balance_of(registry.address) == 50_000
        assert token.balance_of(house) == 50_000
        assert token.balance_of(machine.address) == 1_000 * ONE + ONE - 100_000

    def test_winning_spin_pays_net_of_house_cut(
        self, chain, machine, player, token, house, no_jackpot, fixed_reels
    ):
        fixed_reels(B, B, B)
        result = chain.transact(player, machine.spin, ONE)

        # 15x = 15 tokens, minus 5%
        assert result.payout == 14_250_000
        assert token.balance_of(player) == 1_000 * ONE - ONE + 14_250_000
        assert token.balance_of(house) == 50_000 + 750_000
        assert machine.total_winnings(player) == 14_250_000

    def test_zero_edge_pays_full_table(self, chain, machine, machine_owner, player, no_jackpot, fixed_reels):
        fixed_reels(L, L, L)
        chain.transact(machine_owner, machine.update_configuration, 0, 0)
        result = chain.transact(player, machine.spin, 5 * ONE)
        assert result.payout == 60 * ONE

    def test_jackpot_replaces_table_payout(self, chain, machine, registry, player, token, always_jackpot, fixed_reels):
        fixed_reels(B, B, B)
        result = chain.transact(player, machine.spin, ONE)
        assert result.won_jackpot
        # just this bet's contribution, no table payout, no house cut
        assert result.payout == 50_000
        assert registry.jackpot_pool == 0

    def test_bankroll_too_small_reverts_spin(
        self, chain, machine, machine_owner, player, token, registry, no_jackpot, fixed_reels
    ):
        fixed_reels(B, B, B)
        chain.transact(machine_owner, machine.withdraw_asset, 1_000 * ONE)
        with pytest.raises(InsufficientFundsError):
            chain.transact(player, machine.spin, ONE)
        assert token.balance_of(player) == 1_000 * ONE
        assert registry.jackpot_pool == 0
        assert machine.spin_count == 0

    def test_stats_reported(self, chain, machine, registry, player, player2, no_jackpot, fixed_reels):
        fixed_reels(C, W, L)
        chain.transact(player, machine.spin, ONE)
        chain.transact(player2, machine.spin, 5 * ONE)
        assert machine.spin_count == 2
        assert registry.total_spins == 2
        assert registry.total_volume == 6 * ONE

    def test_history(self, chain, machine, player, player2, no_jackpot):
        first = chain.transact(player, machine.spin, ONE)
        second = chain.transact(player, machine.spin, 5 * ONE)

        assert machine.last_spin(player) == second
        assert machine.spin_history(player) == [first, second]
        assert machine.last_spin(player2) is None
        assert machine.spin_history(player2) == []
        assert second.timestamp == chain.block.timestamp

    def test_spin_event(self, chain, machine, player, no_jackpot, fixed_reels):
        fixed_reels(L, C, W)
        mark = len(chain.events)
        result = chain.transact(player, machine.spin, ONE)

        settled = chain.events_since(mark, "SpinSettled")
        assert len(settled) == 1
        assert settled[0].address == machine.address
        assert settled[0].args["reels"] == [3, 1, 2]
        assert settled[0].args["random_seed"] == result.random_seed


class TestRandomness:
    def test_seeds_do_not_repeat(self, chain, machine, player, no_jackpot):
        seeds = {chain.transact(player, machine.spin, ONE).random_seed for _ in range(20)}
        assert len(seeds) == 20

    def test_refresh_on_cadence(self, chain, registry, deployer, oracle, token, machine_owner, player, no_jackpot):
        chain.transact(deployer, registry.update_configuration, 500, 500, 5)
        address = chain.transact(deployer, registry.create_machine, oracle.address, FEED_ID, machine_owner)
        machine = chain.contract_at(address)
        chain.transact(deployer, token.mint, address, 1_000 * ONE)
        chain.transact(player, token.approve, address, 1_000 * ONE)

        # spin 0 refreshes; spins 1-4 reuse the same base
        chain.transact(player, machine.spin, ONE)
        base = machine.base_randomness
        for _ in range(4):
            chain.transact(player, machine.spin, ONE)
        assert machine.base_randomness == base
        assert machine.spin_count == 5

        chain.transact(player, machine.spin, ONE)
        assert machine.base_randomness != base
        assert machine.get_stats().spin_count == 6

    def test_manual_refresh(self, chain, machine, player):
        before = machine.get_stats()
        chain.transact(player, machine.refresh_randomness)
        after = machine.get_stats()
        assert after.base_randomness != before.base_randomness
        assert after.last_randomness_refresh > before.last_randomness_refresh
        assert after.spin_count == before.spin_count

    def test_oracle_price_mixed_in(self, machine, oracle):
        assert machine.oracle_price() == oracle.get_price_unsafe(FEED_ID)


class TestOwnerConfiguration:
    @pytest.mark.parametrize("args, reason", [
        ((1001, 0), "jackpot share too high"),
        ((0, 1001), "house edge too high"),
        ((-5, 0), "negative share"),
    ])
    def test_ceilings(self, chain, machine, machine_owner, args, reason):
        with pytest.raises(ValidationError) as exc:
            chain.transact(machine_owner, machine.update_configuration, *args)
        assert exc.value.reason == reason
        assert (machine.jackpot_share, machine.house_edge) == (500, 500)

    def test_update_configuration(self, chain, machine, machine_owner):
        chain.transact(machine_owner, machine.update_configuration, 1000, 250)
        assert (machine.jackpot_share, machine.house_edge) == (1000, 250)

    def test_only_owner(self, chain, machine, deployer, player):
        # the registry owner does not own the machine
        for sender in (deployer, player):
            with pytest.raises(AuthorizationError):
                chain.transact(sender, machine.update_configuration, 100, 100)
            with pytest.raises(AuthorizationError):
                chain.transact(sender, machine.update_valid_bet_amounts, [ONE])
            with pytest.raises(AuthorizationError):
                chain.transact(sender, machine.update_payout_table, PayoutTable())

    def test_payout_table(self, chain, machine, machine_owner, player, no_jackpot, fixed_reels):
        fixed_reels(C, C, C)
        chain.transact(machine_owner, machine.update_configuration, 500, 0)
        chain.transact(machine_owner, machine.update_payout_table, PayoutTable(three_cherries=5000))
        result = chain.transact(player, machine.spin, ONE)
        assert result.payout == 50 * ONE

    def test_bet_amounts(self, chain, machine, machine_owner, player):
        chain.transact(machine_owner, machine.update_valid_bet_amounts, [2 * ONE, 3 * ONE])
        assert machine.get_valid_bet_amounts() == [2 * ONE, 3 * ONE]
        assert machine.is_valid_bet_amount(3 * ONE)
        assert not machine.is_valid_bet_amount(ONE)

        with pytest.raises(ValidationError) as exc:
            chain.transact(machine_owner, machine.update_valid_bet_amounts, [])
        assert exc.value.reason == "bet amounts cannot be empty"

    def test_withdraw_asset_goes_to_house(self, chain, machine, machine_owner, token, house):
        chain.transact(machine_owner, machine.withdraw_asset, 100 * ONE)
        assert token.balance_of(house) == 100 * ONE
        assert token.balance_of(machine.address) == 900 * ONE

        with pytest.raises(InsufficientFundsError):
            chain.transact(machine_owner, machine.withdraw_asset, 901 * ONE)

    def test_withdraw_native(self, chain, machine, machine_owner, player, house):
        chain.fund_native(player, 5)
        chain.transact(player, machine.receive, value=5)
        chain.transact(machine_owner, machine.withdraw_native, 5)
        assert chain.native_balance(house) == 5
        assert machine.native_balance() == 0

    def test_symbols(self):
        assert SlotMachine.symbols() == ["Bar", "Cherries", "Watermelon", "Logo"]


class TestReentrancy:
    def test_ledger_callback_cannot_reenter_spin(self, chain, hostile, player):
        token, machine, registry = hostile.token, hostile.machine, hostile.registry
        reentered = []

        def reenter(sender, to, amount):
            # debit of the bet hands control back to the player mid-spin
            if sender == player and to == machine.address:
                reentered.append(True)
                chain.call(player, machine.spin, ONE)

        token.on_move = reenter
        before = (token.balance_of(player), token.balance_of(machine.address), machine.base_randomness)

        with pytest.raises(ReentrancyError):
            chain.transact(player, machine.spin, ONE)

        assert reentered == [True]
        assert machine.spin_count == 0
        assert machine._entered is False
        assert machine.last_spin(player) is None
        assert (token.balance_of(player), token.balance_of(machine.address), machine.base_randomness) == before
        assert registry.jackpot_pool == 0
        assert registry.total_spins == 0

    def test_spin_works_once_callback_is_gone(self, chain, hostile, player, no_jackpot):
        hostile.token.on_move = lambda *args: None
        result = chain.transact(player, hostile.machine.spin, ONE)
        assert result.bet_amount == ONE
        assert hostile.machine.spin_count == 1
