"""
Outbound WhatsApp message templates (Bahasa Indonesia).

Every message the pipeline sends by itself comes from here; free-text
replies written by the intent classifier do not.
"""

from __future__ import annotations

SIGNATURE = "💙 Tim PRIMA"


def verification_prompt(name: str) -> str:
    return (
        f"Halo {name}, ini dari relawan PRIMA.\n\n"
        "Apakah Anda bersedia menerima pengingat minum obat melalui WhatsApp?\n\n"
        "✅ Balas *YA* untuk setuju\n"
        "❌ Balas *TIDAK* untuk menolak\n\n"
        "Pesan ini berlaku selama 48 jam.\n\n"
        f"Terima kasih! {SIGNATURE}"
    )


def verification_accepted(name: str) -> str:
    return (
        f"Terima kasih {name}! ✅\n\n"
        "Anda akan menerima pengingat dari relawan PRIMA.\n\n"
        "Untuk berhenti kapan saja, ketik: *BERHENTI*\n\n"
        f"{SIGNATURE}"
    )


def verification_declined(name: str) -> str:
    return (
        f"Baik {name}, terima kasih atas responsnya.\n\n"
        "Semoga sehat selalu! 🙏\n\n"
        f"{SIGNATURE}"
    )


def unsubscribed(name: str) -> str:
    return (
        f"Baik {name}, Anda telah berhenti dari layanan pengingat PRIMA.\n\n"
        "Semua pengingat untuk Anda sudah dinonaktifkan. "
        "Hubungi relawan kami jika ingin bergabung kembali.\n\n"
        f"Semoga sehat selalu! 🙏 {SIGNATURE}"
    )


def verification_clarification(name: str, attempt: int) -> str:
    """Escalating wording; the patient can retry indefinitely."""
    if attempt <= 1:
        return (
            f"Halo {name}, mohon balas dengan *YA* atau *TIDAK*.\n\n"
            f"Terima kasih! {SIGNATURE}"
        )
    if attempt == 2:
        return (
            f"Halo {name}, mohon balas dengan jelas:\n\n"
            "✅ *YA* atau *SETUJU* untuk menerima pengingat\n"
            "❌ *TIDAK* atau *TOLAK* untuk menolak\n\n"
            f"Terima kasih! {SIGNATURE}"
        )
    return (
        f"Halo {name}, kami masih menunggu jawaban Anda.\n\n"
        "Cukup ketik satu kata: *YA* atau *TIDAK*.\n"
        "Jika bingung, relawan PRIMA siap membantu Anda.\n\n"
        f"Terima kasih! {SIGNATURE}"
    )


def reminder_prompt(name: str, medication: str | None, body: str = "") -> str:
    lines = [f"🏥 *Pengingat Minum Obat - PRIMA*\n\nHalo {name},\n"]
    if body:
        lines.append(f"{body}\n")
    elif medication:
        lines.append(f"⏰ Saatnya minum obat: *{medication}*\n")
    else:
        lines.append("⏰ Saatnya minum obat Anda.\n")
    lines.append(
        "Balas:\n"
        "✅ *SUDAH* jika sudah minum obat\n"
        "⏰ *BELUM* jika belum minum\n"
        "🆘 *BANTUAN* jika butuh bantuan\n\n"
        f"Terima kasih! {SIGNATURE}"
    )
    return "\n".join(lines)


def confirmation_taken(name: str) -> str:
    return (
        f"Terima kasih {name}! ✅\n\n"
        "Konfirmasi minum obat sudah kami catat. Tetap semangat!\n\n"
        f"{SIGNATURE}"
    )


def confirmation_not_yet(name: str) -> str:
    return (
        f"Baik {name}, terima kasih sudah memberi kabar.\n\n"
        "Jangan lupa minum obat ya. Kami akan terus memantau dan "
        "mengingatkan Anda kembali.\n\n"
        f"{SIGNATURE}"
    )


def confirmation_clarification(name: str, attempt: int) -> str:
    if attempt <= 1:
        return (
            f"Halo {name}, mohon balas *SUDAH* atau *BELUM*.\n\n"
            f"Terima kasih! {SIGNATURE}"
        )
    if attempt == 2:
        return (
            f"Halo {name}, mohon konfirmasi dengan jelas:\n\n"
            "✅ Ketik *SUDAH* jika sudah minum obat\n"
            "❌ Ketik *BELUM* jika belum minum\n\n"
            f"Terima kasih! {SIGNATURE}"
        )
    return (
        f"Halo {name}, kami belum bisa memahami balasan Anda.\n\n"
        "Cukup ketik *SUDAH* atau *BELUM*.\n"
        "Butuh bantuan? Ketik *BANTUAN* dan relawan kami akan menghubungi Anda.\n\n"
        f"Terima kasih! {SIGNATURE}"
    )


def help_requested(name: str) -> str:
    return (
        f"Baik {name}, permintaan bantuan Anda sudah kami terima. 🆘\n\n"
        "Relawan PRIMA akan segera menghubungi Anda.\n\n"
        f"{SIGNATURE}"
    )


def emergency_ack(name: str) -> str:
    return (
        f"{name}, pesan Anda sudah kami teruskan ke relawan PRIMA dan akan "
        "segera ditindaklanjuti.\n\n"
        "Jika kondisi darurat, segera hubungi 112 atau datang ke IGD terdekat.\n\n"
        f"{SIGNATURE}"
    )


def generic_ack(name: str) -> str:
    return (
        f"Halo {name}, terima kasih atas pesan Anda. 🙏\n\n"
        "Pesan sudah kami terima dan relawan PRIMA akan membalas bila diperlukan.\n\n"
        f"{SIGNATURE}"
    )


def followup_reminder(name: str) -> str:
    return (
        f"Halo {name}, ini pengingat lanjutan dari PRIMA.\n\n"
        "Apakah Anda sudah minum obat? Balas *SUDAH* atau *BELUM*.\n\n"
        f"Terima kasih! {SIGNATURE}"
    )
