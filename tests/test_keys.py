from matabridge import keys as K


def test_sanitize_identifier_lowercases_and_replaces_separators() -> None:
    assert K.sanitize_identifier(" User@Example.com ") == "user_example_com"
    assert K.sanitize_identifier("") == ""
    assert K.sanitize_identifier(None) == ""


def test_key_builders_use_sanitized_identifier() -> None:
    assert K.keys_key("user@example.com") == "mata_keys_user_example_com"
    assert K.salt_key("user@example.com") == "mata_salt_user_example_com"
    assert K.account_key("user@example.com") == "mata_account_user@example.com"


def test_lookup_formats_try_canonical_first_then_alternates() -> None:
    formats = K.lookup_formats("User.Name@Example.com")

    assert formats[0] == "user_name_example_com"
    assert formats[1] == "User.Name@Example.com"
    assert "User_Name_Example_com" in formats
    assert "user.name@example.com" in formats
    assert len(formats) == len(set(formats))


def test_alternate_forms_exclude_canonical_and_duplicates() -> None:
    forms = K.alternate_identifier_forms("a_b_com")
    assert "a_b_com" not in forms
    assert K.alternate_identifier_forms("A@B.com") == ["A@B.com", "A_B_com", "a@b.com"]


def test_unsanitize_identifier_is_heuristic() -> None:
    assert K.unsanitize_identifier("user_example_com") == "user@example.com"
    assert K.unsanitize_identifier("first_example_co_uk") == "first@example.co.uk"
    assert K.unsanitize_identifier("plain") == "plain"
    assert K.unsanitize_identifier("only_two") == "only_two"


def test_critical_and_related_key_predicates() -> None:
    assert K.is_critical_key("mata_active_user")
    assert K.is_critical_key("mata_keys_a_b_com")
    assert K.is_critical_key("mata_salt_a_b_com")
    assert not K.is_critical_key("mata_accounts")
    assert not K.is_critical_key(None)

    assert K.is_mata_related_key("mata_anything")
    assert K.is_mata_related_key("user_vault_items")
    assert K.is_mata_related_key("legacy_masterKeys")
    assert not K.is_mata_related_key("theme")


def test_worker_private_keys_never_mirror_to_pages() -> None:
    assert K.is_worker_private_key("mata_accounts")
    assert K.is_worker_private_key("mata_account_user@example.com")
    assert K.is_worker_private_key("mata_indexeddb_backup_user@example.com")
    assert K.is_worker_private_key("mata_simple_test")
    assert not K.is_worker_private_key("mata_keys_user_example_com")


def test_identifiers_from_keys_deduplicates_keys_and_salts() -> None:
    found = K.identifiers_from_keys(
        ["mata_keys_a_b_com", "mata_salt_a_b_com", "mata_salt_c_d_org", "mata_keys_", "other"]
    )
    assert found == ["a_b_com", "c_d_org"]


def test_decode_value_tolerates_raw_strings() -> None:
    assert K.decode_value('{"publicKey": "abc"}') == {"publicKey": "abc"}
    assert K.decode_value("not json") == "not json"
    assert K.decode_value("123") == 123
    assert K.decode_value("123", structured_only=True) == "123"
    assert K.decode_value("[1, 2]", structured_only=True) == [1, 2]
    assert K.decode_value({"already": "parsed"}) == {"already": "parsed"}


def test_encode_value_keeps_strings_verbatim() -> None:
    assert K.encode_value("user@example.com") == "user@example.com"
    assert K.encode_value({"a": 1}) == '{"a": 1}'


def test_legacy_key_formats_for_keys_prefix() -> None:
    formats = K.legacy_key_formats("a@b.com", K.KEYS_PREFIX)
    assert formats[0] == "mata_keys_a_b_com"
    assert "mata_keys_a@b.com" in formats
    assert "user_a_b_com_keys" in formats
    assert K.legacy_key_formats("", K.KEYS_PREFIX) == []
