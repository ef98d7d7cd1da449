from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from .registry import get_resolver
from .serializers import CoefficientCalculateSerializer, CoefficientRangesSerializer, LookupResultSerializer


def lookup_warning(requested_category, result):
    """User-facing warning for a lookup, None when the exact data was used"""
    if result.coefficient is None:
        return 'Could not compute coefficient, check the system key and fabric category in the catalog'
    if result.is_fallback_category:
        return (
            f'Category "{requested_category}" has no exact match for system "{result.used_system_key}", '
            f'coefficient calculated for category "{result.used_category}"'
        )
    return None


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def coefficient_calculate(request):
    """Calculate the price coefficient for a sash size"""
    serializer = CoefficientCalculateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    result = get_resolver().get_coefficient_detailed(
        data['system_key'], data['category'], data['width'], data['height']
    )
    response_data = dict(LookupResultSerializer(result).data)
    warning = lookup_warning(data['category'], result)
    if warning:
        response_data['warning'] = warning
    return Response(response_data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def coefficient_system_list(request):
    """List systems available in the coefficient data"""
    resolver = get_resolver()
    return Response([
        {
            'system_key': system_key,
            'categories_count': len(resolver.get_system_categories(system_key)),
        }
        for system_key in resolver.get_available_systems()
    ])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def coefficient_system_categories(request, system_key):
    """List fabric categories of a system (exact system key)"""
    resolver = get_resolver()
    if system_key not in resolver.get_available_systems():
        return Response(
            {'detail': f'System "{system_key}" not found in coefficient data'},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response(resolver.get_system_categories(system_key))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def coefficient_ranges(request):
    """Width and height ranges covered by a system/category grid"""
    serializer = CoefficientRangesSerializer(data=request.query_params)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    return Response(get_resolver().get_coefficient_ranges(data['system_key'], data['category']))
