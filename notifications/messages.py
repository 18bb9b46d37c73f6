"""
Notification texts for donors and requesters
"""

URGENCY_EMOJI = {
    'critical': '🚨',
    'urgent': '⚠️',
    'normal': 'ℹ️',
}

CALL_TO_ACTION = {
    'critical': 'CRITICAL: Immediate response needed!',
    'urgent': 'URGENT: Response needed within 24-48 hours',
}
DEFAULT_CALL_TO_ACTION = 'Your donation could save a life!'


def blood_request_title(blood_request):
    return f"🩸 Blood Donation Needed - {blood_request.blood_group}"


def blood_request_message(blood_request, donor):
    """Message shown to a donor asked to give blood for a request."""
    emoji = URGENCY_EMOJI.get(blood_request.urgency_level, 'ℹ️')
    match_type = 'EXACT MATCH' if donor.blood_group == blood_request.blood_group else 'COMPATIBLE'
    call_to_action = CALL_TO_ACTION.get(blood_request.urgency_level, DEFAULT_CALL_TO_ACTION)

    return f"""{emoji} BLOOD DONATION NEEDED - {match_type}

Patient: {blood_request.patient_name}
Blood Group Needed: {blood_request.blood_group}
Your Blood Group: {donor.blood_group}
Units Required: {blood_request.units_required}
Hospital: {blood_request.hospital_name}
Urgency: {blood_request.urgency_level.upper()}

{call_to_action}"""


def donor_accepted_message(blood_request, donor_response):
    lines = [
        f"Great news! {donor_response.donor_name} ({donor_response.donor_blood_group}) has accepted "
        f"to donate blood for {blood_request.patient_name}.",
        '',
        'Contact Details:',
        f"📧 Email: {donor_response.donor_email or 'N/A'}",
        f"📞 Phone: {donor_response.donor_phone or 'N/A'}",
        '',
        f"Hospital: {blood_request.hospital_name}",
        f"Units Needed: {blood_request.units_required}",
        f"Urgency: {blood_request.urgency_level}",
    ]
    if donor_response.message:
        lines += ['', f"Donor Message: {donor_response.message}"]
    lines += ['', 'Please contact the donor directly to coordinate the donation.']
    return '\n'.join(lines)


def donation_reminder_message(blood_request):
    lines = [
        f"Thank you for accepting to donate blood for {blood_request.patient_name}!",
        '',
        'Request Details:',
        f"🩸 Blood Group: {blood_request.blood_group}",
        f"🏥 Hospital: {blood_request.hospital_name}",
    ]
    if blood_request.city:
        lines.append(f"📍 Location: {blood_request.city}")
    lines += [
        f"⏰ Urgency: {blood_request.urgency_level}",
        f"💉 Units Needed: {blood_request.units_required}",
    ]
    if blood_request.contact_person:
        lines.append(f"Contact Person: {blood_request.contact_person}")
    if blood_request.contact_phone:
        lines.append(f"Contact Number: {blood_request.contact_phone}")
    lines += [
        '',
        'Please visit the hospital at your earliest convenience to complete the donation. '
        'Your contribution can save a life!',
    ]
    return '\n'.join(lines)
