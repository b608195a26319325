import re


def is_valid_cpf(cpf: str | None) -> bool:
    if not cpf:
        return False

    digits = re.sub(r'\D', '', cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    for check_position in (9, 10):
        total = sum(int(digit) * weight for digit, weight in zip(digits[:check_position], range(check_position + 1, 1, -1)))
        check_digit = (total * 10) % 11 % 10
        if check_digit != int(digits[check_position]):
            return False

    return True
