"""Tests for the party roster reducer and spouse synchronisation."""
import pytest

from deal_intake.domain.parties.models import Party, PartyRoster
from deal_intake.domain.parties.roster import (
    add_party,
    add_spouse,
    apply_party_patch,
    can_add_spouse,
    coerce_patch,
    paired_index,
    remove_party,
    spouse_missing,
    update_party,
)
from deal_intake.shared.enums import MaritalState, PersonType, PropertyRegime, Role
from deal_intake.shared.errors import RosterError


def _married_buyers():
    """Buyer roster: married principal with an auto spouse."""
    roster = PartyRoster.initial()
    return update_party(roster, Role.BUYER, 0, {"marital_state": "married"})


def test_initial_roster_has_one_party_per_role():
    """Test initial roster shape and defaults."""
    roster = PartyRoster.initial()
    assert len(roster.sellers) == 1
    assert len(roster.buyers) == 1
    party = roster.buyers[0]
    assert party.person_type == PersonType.INDIVIDUAL
    assert party.marital_state == MaritalState.SINGLE
    assert party.property_regime is None
    assert party.is_spouse is False


def test_marrying_a_buyer_inserts_spouse():
    """Test a buyer set to married gets a spouse right after it."""
    roster = add_party(PartyRoster(sellers=(Party(role=Role.SELLER),)), Role.BUYER)
    assert len(roster.buyers) == 1

    roster = update_party(roster, Role.BUYER, 0, {"person_type": "individual", "marital_state": "married"})

    assert len(roster.buyers) == 2
    spouse = roster.buyers[1]
    assert spouse.is_spouse is True
    assert spouse.marital_state == MaritalState.MARRIED
    assert spouse.property_regime == PropertyRegime.PARTIAL_COMMUNION
    assert spouse.role == Role.BUYER


def test_spouse_inherits_principal_regime():
    """Test the inserted spouse copies an existing regime."""
    roster = PartyRoster.initial()
    roster = update_party(roster, Role.SELLER, 0, {"property_regime": "total_separation"})
    roster = update_party(roster, Role.SELLER, 0, {"marital_state": "civil_union"})
    assert roster.sellers[1].property_regime == PropertyRegime.TOTAL_SEPARATION
    assert roster.sellers[1].marital_state == MaritalState.CIVIL_UNION


def test_becoming_single_removes_spouse():
    """Test the spouse entry is removed when the principal leaves marriage."""
    roster = _married_buyers()
    principal_id = roster.buyers[0].id

    roster = update_party(roster, Role.BUYER, 0, {"marital_state": "single"})

    assert len(roster.buyers) == 1
    assert roster.buyers[0].id == principal_id
    assert not any(p.is_spouse for p in roster.buyers)


def test_married_to_civil_union_keeps_spouse():
    """Test moving between qualifying states keeps exactly one spouse."""
    roster = _married_buyers()
    roster = update_party(roster, Role.BUYER, 0, {"marital_state": "civil_union"})
    assert len(roster.buyers) == 2
    assert sum(1 for p in roster.buyers if p.is_spouse) == 1


def test_entity_never_gets_spouse():
    """Test legal entities are not given spouses."""
    roster = PartyRoster.initial()
    roster = update_party(roster, Role.SELLER, 0, {"person_type": "entity", "marital_state": "married"})
    assert len(roster.sellers) == 1


def test_second_married_principal_gets_no_auto_spouse():
    """Test auto insertion is skipped when the list already holds a spouse."""
    roster = _married_buyers()
    roster = add_party(roster, Role.BUYER)
    roster = update_party(roster, Role.BUYER, 2, {"marital_state": "married"})

    assert len(roster.buyers) == 3
    assert spouse_missing(roster.buyers) == [2]
    assert can_add_spouse(roster.buyers) is True


def test_add_spouse_affordance_inserts_after_principal():
    """Test the explicit add-spouse operation."""
    roster = _married_buyers()
    roster = add_party(roster, Role.BUYER)
    roster = update_party(roster, Role.BUYER, 2, {"marital_state": "married"})

    roster = add_spouse(roster, Role.BUYER, 2)

    assert len(roster.buyers) == 4
    assert roster.buyers[3].is_spouse
    assert paired_index(roster.buyers, 3) == 2
    assert spouse_missing(roster.buyers) == []
    assert can_add_spouse(roster.buyers) is False


def test_add_spouse_requires_qualifying_principal():
    """Test add_spouse rejects a single principal."""
    with pytest.raises(RosterError) as exc:
        add_spouse(PartyRoster.initial(), Role.SELLER, 0)
    assert exc.value.code == "not_qualifying"


def test_can_add_spouse_without_any_spouse_entry():
    """Test the affordance is offered while no spouse is listed."""
    sellers = PartyRoster.initial().sellers
    assert spouse_missing(sellers) == []
    assert can_add_spouse(sellers) is True


def test_regime_edit_on_principal_updates_spouse():
    """Test regime propagation from principal to spouse."""
    roster = _married_buyers()
    roster = update_party(roster, Role.BUYER, 0, {"property_regime": "universal_communion"})
    assert roster.buyers[0].property_regime == PropertyRegime.UNIVERSAL_COMMUNION
    assert roster.buyers[1].property_regime == PropertyRegime.UNIVERSAL_COMMUNION


def test_regime_edit_on_spouse_updates_principal():
    """Test regime propagation from spouse to principal."""
    roster = _married_buyers()
    roster = update_party(roster, Role.BUYER, 1, {"property_regime": "final_participation"})
    assert roster.buyers[0].property_regime == PropertyRegime.FINAL_PARTICIPATION
    assert roster.buyers[1].property_regime == PropertyRegime.FINAL_PARTICIPATION


def test_regime_propagation_is_one_hop():
    """Test a regime edit never reaches parties beyond the immediate pair."""
    roster = _married_buyers()
    roster = add_party(roster, Role.BUYER)
    roster = update_party(roster, Role.BUYER, 2, {"marital_state": "married", "property_regime": "total_separation"})

    roster = update_party(roster, Role.BUYER, 1, {"property_regime": "universal_communion"})

    assert roster.buyers[0].property_regime == PropertyRegime.UNIVERSAL_COMMUNION
    assert roster.buyers[2].property_regime == PropertyRegime.TOTAL_SEPARATION


def test_spouse_pairs_with_nearest_preceding_principal():
    """Test the explicit pairing rule among several qualifying principals."""
    parties = (
        Party(role=Role.SELLER, marital_state=MaritalState.MARRIED),
        Party(role=Role.SELLER, marital_state=MaritalState.MARRIED),
        Party(role=Role.SELLER, marital_state=MaritalState.MARRIED, is_spouse=True),
    )
    assert paired_index(parties, 2) == 1
    assert paired_index(parties, 1) == 2
    assert paired_index(parties, 0) is None

    updated = apply_party_patch(parties, 2, {"property_regime": "total_separation"})
    assert updated[1].property_regime == PropertyRegime.TOTAL_SEPARATION
    assert updated[0].property_regime is None


def test_remove_party_blocked_for_last_of_role():
    """Test removing the only party of a role is a no-op."""
    roster = PartyRoster.initial()
    assert remove_party(roster, Role.SELLER, 0) == roster


def test_remove_party_removes_by_index():
    """Test removal of one party from a larger list."""
    roster = add_party(PartyRoster.initial(), "seller")
    second = roster.sellers[1].id
    roster = remove_party(roster, "seller", 0)
    assert [p.id for p in roster.sellers] == [second]


def test_operations_return_new_rosters():
    """Test roster edits never mutate their input."""
    roster = PartyRoster.initial()
    updated = update_party(roster, Role.BUYER, 0, {"marital_state": "married"})
    assert len(roster.buyers) == 1
    assert updated is not roster


@pytest.mark.parametrize(
    "patch,code",
    [
        ({"name": "x"}, "unknown_field"),
        ({"marital_state": "complicated"}, "invalid_value"),
        ({"person_type": None}, "invalid_value"),
    ],
)
def test_coerce_patch_rejects_bad_input(patch, code):
    """Test invalid patches raise RosterError with a code."""
    with pytest.raises(RosterError) as exc:
        coerce_patch(patch)
    assert exc.value.code == code


def test_bad_index_and_role():
    """Test out-of-range index and unknown role."""
    roster = PartyRoster.initial()
    with pytest.raises(RosterError) as exc:
        update_party(roster, Role.BUYER, 5, {"marital_state": "married"})
    assert exc.value.code == "bad_index"
    with pytest.raises(RosterError) as exc:
        add_party(roster, "notary")
    assert exc.value.code == "unknown_role"
