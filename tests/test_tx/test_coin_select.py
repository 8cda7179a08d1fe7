"""Tests for accumulative coin selection."""

from __future__ import annotations

import math

import pytest

from conftest import CHANGE_SCRIPT, P2PKH_SCRIPT
from photonic_chain.errors.definitions import FeeTooLarge, InsufficientFunds, InvalidAmount
from photonic_chain.tx.coin_select import DEFAULT_MAX_FEE, dust_threshold, fee_for, select_coins
from photonic_chain.tx.models import CandidateOutput, SelectableInput
from photonic_chain.tx.size import estimate_transaction_bytes


def _coin(value: int, n: int = 0, **kwargs) -> SelectableInput:
    return SelectableInput(
        txid=f"{n:064x}", vout=n, script=P2PKH_SCRIPT, value=value, **kwargs
    )


def _pay(value: int) -> list[CandidateOutput]:
    return [CandidateOutput(P2PKH_SCRIPT, value)]


class TestHelpers:
    def test_fee_rounds_up(self) -> None:
        assert fee_for(226, 1) == 226
        assert fee_for(3, 0.5) == 2

    def test_dust_threshold_counts_create_and_spend(self) -> None:
        # 34-byte output + 148-byte spend
        assert dust_threshold(CHANGE_SCRIPT, 1) == 182
        assert dust_threshold(CHANGE_SCRIPT, 10_000) == 1_820_000
        assert dust_threshold(CHANGE_SCRIPT, 1, 2.0) == 364

    def test_default_ceiling(self) -> None:
        assert DEFAULT_MAX_FEE == 10 * 10_000 * 100_000


class TestSelectCoins:
    def test_single_input_with_change(self) -> None:
        selection = select_coins([_coin(100_000)], _pay(50_000), [], 1, CHANGE_SCRIPT)

        assert selection.size == 226
        assert selection.fee == 226
        assert selection.change == CandidateOutput(CHANGE_SCRIPT, 49_774)
        assert selection.outputs[-1] is selection.change
        assert selection.input_value == selection.output_value + selection.fee

    def test_size_matches_reestimate(self) -> None:
        coins = [_coin(30_000, i) for i in range(5)]
        selection = select_coins(coins, _pay(70_000), [], 2, CHANGE_SCRIPT)

        assert selection.size == estimate_transaction_bytes(selection.inputs, selection.outputs)
        assert selection.fee >= fee_for(selection.size, 2)

    def test_caller_order_kept(self) -> None:
        small, big = _coin(1_000, 1), _coin(1_000_000, 2)
        selection = select_coins([small, big], _pay(5_000), [], 1, CHANGE_SCRIPT)
        assert selection.inputs == [small, big]

    def test_stops_once_funded(self) -> None:
        coins = [_coin(100_000, i) for i in range(4)]
        selection = select_coins(coins, _pay(150_000), [], 1, CHANGE_SCRIPT)
        assert selection.inputs == coins[:2]

    def test_required_inputs_alone_fund(self) -> None:
        required = _coin(200_000, 9)
        available = [_coin(100_000, i) for i in range(3)]
        selection = select_coins(available, _pay(50_000), [required], 1, CHANGE_SCRIPT)
        assert selection.inputs == [required]

    def test_available_entry_flagged_required(self) -> None:
        token = _coin(1, 7, required=True, script_sig_size=300)
        funding = _coin(100_000, 1)
        selection = select_coins([funding, token], _pay(1_000), [], 1, CHANGE_SCRIPT)

        assert selection.inputs[0] == token
        assert funding in selection.inputs
        assert selection.inputs.count(token) == 1

    def test_insufficient_funds(self) -> None:
        with pytest.raises(InsufficientFunds) as exc_info:
            select_coins([_coin(1_000), _coin(2_000, 1)], _pay(5_000), [], 1, CHANGE_SCRIPT)
        assert exc_info.value.available == 3_000
        assert exc_info.value.required > 5_000

    def test_nothing_available(self) -> None:
        with pytest.raises(InsufficientFunds):
            select_coins([], _pay(1), [], 1, CHANGE_SCRIPT)

    def test_dust_folded_into_fee(self) -> None:
        # 192 bytes without change; 108 left over is below the 182 dust threshold
        selection = select_coins([_coin(50_300)], _pay(50_000), [], 1, CHANGE_SCRIPT)

        assert selection.change is None
        assert selection.fee == 300
        assert selection.size == 192
        assert len(selection.outputs) == 1

    def test_leftover_just_above_dust_makes_change(self) -> None:
        selection = select_coins([_coin(50_000 + 192 + 183)], _pay(50_000), [], 1, CHANGE_SCRIPT)
        assert selection.change is not None
        assert selection.change.value == 183 - 34

    def test_input_count_varint_growth(self) -> None:
        coins = [_coin(1, i) for i in range(300)]
        selection = select_coins(coins, _pay(255), [], 0, CHANGE_SCRIPT)

        assert len(selection.inputs) == 255
        assert selection.size == estimate_transaction_bytes(selection.inputs, selection.outputs)
        assert selection.fee == 0

    def test_fee_ceiling(self) -> None:
        with pytest.raises(FeeTooLarge) as exc_info:
            select_coins([_coin(100_000)], _pay(50_000), [], 1, CHANGE_SCRIPT, max_fee=100)
        assert exc_info.value.fee == 226
        assert exc_info.value.max_fee == 100

    @pytest.mark.parametrize("rate", [-1, math.nan, math.inf])
    def test_invalid_fee_rate(self, rate: float) -> None:
        with pytest.raises(InvalidAmount):
            select_coins([_coin(100_000)], _pay(1), [], rate, CHANGE_SCRIPT)

    def test_does_not_mutate_arguments(self) -> None:
        coins = [_coin(100_000)]
        outputs = _pay(1_000)
        select_coins(coins, outputs, [], 1, CHANGE_SCRIPT)
        assert coins == [_coin(100_000)]
        assert outputs == _pay(1_000)
