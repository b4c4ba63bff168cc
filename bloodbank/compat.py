"""ABO/Rh compatibility matrix for red-cell transfusion."""

from bloodbank.models import BloodType

# Recipient type -> donor types that may supply it, in preference order.
DONORS_BY_RECIPIENT: dict[BloodType, tuple[BloodType, ...]] = {
    BloodType.A_POS: (BloodType.A_POS, BloodType.A_NEG, BloodType.O_POS, BloodType.O_NEG),
    BloodType.A_NEG: (BloodType.A_NEG, BloodType.O_NEG),
    BloodType.B_POS: (BloodType.B_POS, BloodType.B_NEG, BloodType.O_POS, BloodType.O_NEG),
    BloodType.B_NEG: (BloodType.B_NEG, BloodType.O_NEG),
    BloodType.AB_POS: (
        BloodType.A_POS, BloodType.A_NEG,
        BloodType.B_POS, BloodType.B_NEG,
        BloodType.AB_POS, BloodType.AB_NEG,
        BloodType.O_POS, BloodType.O_NEG,
    ),
    BloodType.AB_NEG: (BloodType.A_NEG, BloodType.B_NEG, BloodType.AB_NEG, BloodType.O_NEG),
    BloodType.O_POS: (BloodType.O_POS, BloodType.O_NEG),
    BloodType.O_NEG: (BloodType.O_NEG,),
}


def compatible_donor_types(recipient_type: BloodType | str) -> tuple[BloodType, ...]:
    """Donor types allowed to supply ``recipient_type``.

    Example: for an A+ recipient returns (A+, A-, O+, O-). A type missing
    from the table (UNKNOWN) only matches itself.
    """
    recipient = BloodType.parse(recipient_type, "recipient blood type")
    return DONORS_BY_RECIPIENT.get(recipient, (recipient,))


def can_receive(recipient_type: BloodType | str, donor_type: BloodType | str) -> bool:
    return BloodType.parse(donor_type, "donor blood type") in compatible_donor_types(recipient_type)
