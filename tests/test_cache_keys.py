from card_identity.utils.cache_keys import (OwnerGenerations, card_key,
                                            owner_list_key, owner_write_keys)


def test_keys_are_scoped_per_owner_and_flag():
    assert owner_list_key("patient", "p1") == "card_identity:list:patient:p1"
    assert card_key("patient", "p1", "KTP") == "card_identity:card:patient:p1:KTP"
    assert owner_write_keys("patient", "p1", "KTP") == [
        owner_list_key("patient", "p1"),
        card_key("patient", "p1", "KTP"),
    ]


def test_separator_inside_ids_cannot_collide():
    assert card_key("patient", "a:b", "c") != card_key("patient", "a", "b:c")
    assert owner_list_key("x:y", "z") != owner_list_key("x", "y:z")


def test_owner_generation_moves_on_write():
    gens = OwnerGenerations()
    token = gens.token("patient", "p1")
    assert gens.is_current("patient", "p1", token)

    gens.bump("patient", "p1")
    assert not gens.is_current("patient", "p1", token)
    assert gens.is_current("patient", "p1", gens.token("patient", "p1"))


def test_single_stripe_treats_every_write_as_overlapping():
    gens = OwnerGenerations(stripes=1)
    token = gens.token("patient", "p1")
    gens.bump("employee", "e9")
    assert not gens.is_current("patient", "p1", token)
