from gritsync.core.feature_flags import SettingsSnapshot, load_settings_snapshot


def test_flags_are_true_only_for_true_strings():
    snap = SettingsSnapshot(
        {"emailNotificationsEnabled": "TRUE", "emailPaymentUpdates": "yes"}
    )
    assert snap.email_notifications_enabled is True
    assert snap.email_payment_updates is False
    assert snap.payment_emails_enabled is False


def test_missing_flags_default_off():
    snap = SettingsSnapshot()
    assert snap.payment_emails_enabled is False


def test_sender_identity_falls_back_to_config():
    snap = SettingsSnapshot({"emailFrom": ""})
    assert snap.email_from == "noreply@gritsync.com"
    assert snap.email_from_name == "GritSync"


def test_load_snapshot_reads_table_once(db, set_settings):
    set_settings(emailNotificationsEnabled="true", emailPaymentUpdates="true", emailFrom="x@gritsync.com")

    snap = load_settings_snapshot(db)
    set_settings(emailFromName="Changed Later")

    assert snap.payment_emails_enabled is True
    assert snap.email_from == "x@gritsync.com"
    assert snap.email_from_name == "GritSync"
