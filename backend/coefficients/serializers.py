from rest_framework import serializers


class CoefficientCalculateSerializer(serializers.Serializer):
    # Keys go to the resolver untouched, it does its own normalization
    system_key = serializers.CharField(trim_whitespace=False)
    category = serializers.CharField(trim_whitespace=False, allow_blank=True)
    width = serializers.FloatField(help_text='Width in meters')
    height = serializers.FloatField(help_text='Height in meters')


class CoefficientRangesSerializer(serializers.Serializer):
    system_key = serializers.CharField(trim_whitespace=False)
    category = serializers.CharField(trim_whitespace=False)


class LookupResultSerializer(serializers.Serializer):
    coefficient = serializers.FloatField(allow_null=True)
    used_system_key = serializers.CharField(allow_null=True)
    used_category = serializers.CharField(allow_null=True)
    is_fallback_category = serializers.BooleanField()
